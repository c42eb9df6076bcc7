"""
Logging utilities for relay runs.

Features:
- Per-stage timing with success/failure levels from LoggingConfig
- Submission and settlement events
- Address masking
"""
from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, AsyncIterator, Dict, Optional

from .config import LoggingConfig
from .settlement import Failed, Settlement

logger = logging.getLogger(__name__)


class Stage(str, Enum):
    """Pipeline stages of one relay run."""
    ENCODE = "encode"
    ESTIMATE = "estimate"
    BUILD = "build"
    SPONSOR = "sponsor"
    SIGN = "sign"
    SUBMIT = "submit"
    POLL = "poll"


@dataclass
class StageContext:
    """Timing and outcome of one pipeline stage."""
    run_id: str
    stage: Stage
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    duration_ms: Optional[float] = None
    success: bool = False
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def complete(self, started: float, success: bool = True, error: Optional[str] = None) -> None:
        self.duration_ms = (time.monotonic() - started) * 1000
        self.success = success
        self.error = error

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "stage": self.stage.value,
            "started_at": self.started_at.isoformat(),
            "duration_ms": self.duration_ms,
            "success": self.success,
            "error": self.error,
            "metadata": self.metadata,
        }


def new_run_id() -> str:
    return f"run_{uuid.uuid4().hex[:12]}"


def mask_address(address: str) -> str:
    """Mask middle portion of address for privacy."""
    if len(address) < 10:
        return address
    return f"{address[:6]}...{address[-4:]}"


class RelayLogger:
    """
    Structured logger for relay runs.

    Keeps no history between runs; every event goes straight to the
    underlying logger with its data in ``extra``.
    """

    def __init__(
        self,
        name: str = "boc_relay",
        config: Optional[LoggingConfig] = None,
    ):
        self._logger = logging.getLogger(name)
        self._config = config or LoggingConfig()

    def _get_level(self, level_str: str) -> int:
        """Convert level string to logging level."""
        return getattr(logging, level_str.upper(), logging.INFO)

    def _address(self, address: str) -> str:
        return mask_address(address) if self._config.mask_addresses else address

    @asynccontextmanager
    async def stage_context(self, stage: Stage, run_id: str, **metadata) -> AsyncIterator[StageContext]:
        """
        Time one pipeline stage.

        Usage:
            async with relay_logger.stage_context(Stage.SPONSOR, run_id) as ctx:
                ctx.metadata["paymaster"] = result.paymaster
        """
        ctx = StageContext(run_id=run_id, stage=stage, metadata=metadata)
        started = time.monotonic()

        self._logger.debug(f"[{run_id}] Starting {stage.value}", extra={"stage": ctx.to_dict()})

        try:
            yield ctx
            ctx.complete(started, success=True)
        except BaseException as e:
            ctx.complete(started, success=False, error=str(e) or type(e).__name__)
            raise
        finally:
            level = (
                self._get_level(self._config.error_level)
                if not ctx.success
                else self._get_level(self._config.stage_level)
            )
            self._logger.log(
                level,
                f"[{run_id}] Completed {stage.value} in {ctx.duration_ms or 0:.0f}ms "
                f"(success={ctx.success})",
                extra={"stage": ctx.to_dict()},
            )

    def log_submission(self, run_id: str, user_op_hash: str, sender: str, nonce: int) -> None:
        """Log an accepted submission; the handle is what reconciliation needs."""
        sender_display = self._address(sender)
        self._logger.log(
            self._get_level(self._config.settlement_level),
            f"[{run_id}] Operation submitted: {user_op_hash} sender={sender_display} nonce={nonce}",
            extra={
                "submission": {
                    "run_id": run_id,
                    "user_op_hash": user_op_hash,
                    "sender": sender_display,
                    "nonce": nonce,
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                }
            },
        )

    def log_settlement(self, run_id: str, settlement: Settlement) -> None:
        """Log the terminal outcome of a run."""
        if isinstance(settlement, Failed):
            self._logger.log(
                self._get_level(self._config.error_level),
                f"[{run_id}] Relay failed: {settlement.kind.value} - {settlement.message}",
                extra={"settlement": {"run_id": run_id, **settlement.to_dict()}},
            )
            return

        self._logger.log(
            self._get_level(self._config.settlement_level),
            f"[{run_id}] Operation included in {settlement.transaction_hash}"
            + (" (call reverted on-chain)" if settlement.success is False else ""),
            extra={
                "settlement": {
                    "run_id": run_id,
                    "user_op_hash": settlement.user_op_hash,
                    **settlement.to_dict(),
                }
            },
        )


def setup_logging(
    level: str = "INFO",
    format_string: Optional[str] = None,
    json_format: bool = False,
) -> None:
    """
    Set up logging configuration.

    Args:
        level: Log level
        format_string: Custom format string
        json_format: Use JSON formatting
    """
    if format_string is None:
        if json_format:
            format_string = '{"timestamp": "%(asctime)s", "level": "%(levelname)s", "name": "%(name)s", "message": "%(message)s"}'
        else:
            format_string = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format=format_string,
    )

    logging.getLogger("boc_relay").setLevel(getattr(logging, level.upper()))
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
