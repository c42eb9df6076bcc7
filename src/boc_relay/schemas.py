"""
Wire models for external JSON-RPC payloads.

Every payload from the execution node, sponsor and bundler goes through one
of these models before any field is read.
"""
from __future__ import annotations

import re
from typing import Annotated, Any, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, model_validator
from pydantic.alias_generators import to_camel

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
_HEX_RE = re.compile(r"^0x([0-9a-fA-F]{2})*$")


def parse_quantity(value: Any) -> int:
    """Parse a JSON-RPC quantity ("0x1a" or a plain integer)."""
    if isinstance(value, bool):
        raise ValueError("quantity must be an integer or hex string")
    if isinstance(value, int):
        if value < 0:
            raise ValueError("quantity must not be negative")
        return value
    if isinstance(value, str):
        text = value.strip()
        if text.lower().startswith("0x"):
            return int(text, 16) if len(text) > 2 else 0
        if text.isdigit():
            return int(text)
    raise ValueError(f"invalid quantity: {value!r}")


def _parse_address(value: Any) -> str:
    if not isinstance(value, str) or not _ADDRESS_RE.match(value):
        raise ValueError(f"invalid address: {value!r}")
    return value


def _parse_hex_data(value: Any) -> str:
    if not isinstance(value, str) or not _HEX_RE.match(value):
        raise ValueError(f"invalid hex data: {value!r}")
    return value


def _parse_handle(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError("expected a non-empty string")
    return value


Quantity = Annotated[int, BeforeValidator(parse_quantity)]
Address = Annotated[str, BeforeValidator(_parse_address)]
HexData = Annotated[str, BeforeValidator(_parse_hex_data)]
Handle = Annotated[str, BeforeValidator(_parse_handle)]


class WireModel(BaseModel):
    """Base model for camelCase JSON-RPC payloads."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )


class RpcErrorObject(WireModel):
    code: int
    message: str = ""
    data: Any = None


class RpcEnvelope(WireModel):
    """A JSON-RPC 2.0 response: exactly one of result or error."""
    jsonrpc: Optional[str] = None
    id: Optional[Union[int, str]] = None
    result: Any = None
    error: Optional[RpcErrorObject] = None

    @model_validator(mode="after")
    def _result_or_error(self) -> "RpcEnvelope":
        if self.error is None and "result" not in self.model_fields_set:
            raise ValueError("response carries neither result nor error")
        return self


class SponsorshipResult(WireModel):
    """Sponsor fields returned by pm_sponsorUserOperation (v0.7 layout)."""
    paymaster: Address
    paymaster_verification_gas_limit: Quantity
    paymaster_post_op_gas_limit: Quantity
    paymaster_data: HexData
    # Optional gas overrides some sponsors re-estimate
    call_gas_limit: Optional[Quantity] = None
    verification_gas_limit: Optional[Quantity] = None
    pre_verification_gas: Optional[Quantity] = None


class TransactionReceipt(WireModel):
    transaction_hash: Handle
    block_number: Optional[Quantity] = None
    status: Optional[Quantity] = None


class UserOperationReceipt(WireModel):
    """
    Result of eth_getUserOperationReceipt.

    Bundlers nest the settlement hash under ``receipt.transactionHash``;
    some also expose it at the top level.
    """
    user_op_hash: Optional[str] = None
    success: Optional[bool] = None
    reason: Optional[str] = None
    transaction_hash: Optional[Handle] = None
    receipt: Optional[TransactionReceipt] = None

    @model_validator(mode="after")
    def _has_transaction_hash(self) -> "UserOperationReceipt":
        if self.transaction_hash is None and self.receipt is None:
            raise ValueError("receipt carries no transaction hash")
        return self

    @property
    def settlement_hash(self) -> str:
        if self.receipt is not None:
            return self.receipt.transaction_hash
        return self.transaction_hash  # type: ignore[return-value]
