"""Terminal outcomes of a relay run."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from .errors import CALLER_ERROR_KINDS, TRANSIENT_ERROR_KINDS, ErrorKind, RelayError


@dataclass(frozen=True)
class Included:
    """The operation landed in a transaction."""
    transaction_hash: str
    user_op_hash: Optional[str] = None
    # False when the operation was included but its call reverted on-chain
    success: Optional[bool] = None

    @property
    def ok(self) -> bool:
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {"transactionHash": self.transaction_hash}


@dataclass(frozen=True)
class Failed:
    """The run ended with a typed failure."""
    kind: ErrorKind
    message: str
    user_op_hash: Optional[str] = None

    @property
    def ok(self) -> bool:
        return False

    @property
    def is_caller_error(self) -> bool:
        return self.kind in CALLER_ERROR_KINDS

    @property
    def is_transient(self) -> bool:
        return self.kind in TRANSIENT_ERROR_KINDS

    @classmethod
    def from_error(cls, error: RelayError) -> "Failed":
        return cls(kind=error.kind, message=error.message, user_op_hash=error.user_op_hash)

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "message": self.message}


Settlement = Union[Included, Failed]
