"""Bounded polling for user operation receipts."""

from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Optional

from ..config import PollingConfig
from ..errors import TimedOut
from ..schemas import UserOperationReceipt
from .bundler_client import BundlerClient, ReceiptLookupError

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class PollAttempt:
    """One receipt lookup; ``receipt`` is None while the operation is pending."""
    number: int
    receipt: Optional[UserOperationReceipt] = None
    error: Optional[str] = None

    @property
    def included(self) -> bool:
        return self.receipt is not None


class ReceiptPoller:
    """
    Polls the bundler for a receipt at a fixed interval.

    Lookup errors count as empty results. At most ``max_attempts`` lookups
    are made and the poller sleeps only between attempts, never after the
    last one. Exhausting the budget means the outcome is unknown, not that
    the operation failed.
    """

    def __init__(
        self,
        bundler: BundlerClient,
        polling: Optional[PollingConfig] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self._bundler = bundler
        self._polling = polling or PollingConfig()
        self._sleep = sleep

    @property
    def polling(self) -> PollingConfig:
        return self._polling

    async def attempts(self, user_op_hash: str) -> AsyncIterator[PollAttempt]:
        """
        Lazily yield lookup attempts until a receipt arrives or the budget ends.

        The sequence is finite and a fresh generator is needed to poll again.
        """
        for number in range(1, self._polling.max_attempts + 1):
            try:
                receipt = await self._bundler.get_user_operation_receipt(user_op_hash)
                attempt = PollAttempt(number=number, receipt=receipt)
            except ReceiptLookupError as exc:
                logger.debug(f"Receipt lookup {number} for {user_op_hash} failed: {exc}")
                attempt = PollAttempt(number=number, error=str(exc))

            yield attempt
            if attempt.included:
                return
            if number < self._polling.max_attempts:
                await self._sleep(self._polling.interval_seconds)

    async def wait(self, user_op_hash: str) -> UserOperationReceipt:
        """
        Poll until the operation is included.

        Raises:
            TimedOut: Every attempt came back empty
        """
        attempts = 0
        async with aclosing(self.attempts(user_op_hash)) as lookups:
            async for attempt in lookups:
                attempts = attempt.number
                if attempt.receipt is not None:
                    logger.debug(f"Receipt for {user_op_hash} found on attempt {attempt.number}")
                    return attempt.receipt

        raise TimedOut(
            f"No receipt for {user_op_hash} after {attempts} lookups "
            f"({self._polling.budget_seconds:.0f}s); the operation may still be included",
            user_op_hash=user_op_hash,
        )
