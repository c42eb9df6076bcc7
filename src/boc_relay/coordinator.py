"""
Relay coordinator.

Runs one intent through encode -> estimate -> build -> sponsor -> submit ->
poll and turns the outcome into a Settlement. Each call to relay() is an
independent run: the coordinator keeps no state between runs, so one
instance can serve concurrent intents.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

import httpx
from web3 import Web3

from .config import LoggingConfig, RelayConfig, RetryConfig, get_config
from .errors import (
    DeadlineExceeded,
    IncompleteOperation,
    InvalidIntent,
    RelayError,
    SubmissionAmbiguous,
    TimedOut,
)
from .erc4337.builder import OperationBuilder
from .erc4337.bundler_client import BundlerClient
from .erc4337.paymaster_client import PaymasterClient
from .erc4337.receipts import ReceiptPoller, Sleep
from .erc4337.signer import OperationSigner, user_operation_hash
from .erc4337.user_operation import UserOperation
from .estimator import ResourceEstimate, ResourceEstimator
from .execution import ExecutionClient
from .intent import CallIntent, IntentEncoder, default_encoder
from .logging_utils import RelayLogger, Stage, new_run_id
from .rpc import JsonRpcClient
from .settlement import Failed, Included, Settlement

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class _RunState:
    """Where a single run currently is; read when the deadline fires."""
    run_id: str
    stage: Stage = Stage.ENCODE
    user_op: Optional[UserOperation] = None
    user_op_hash: Optional[str] = None


class RelayCoordinator:
    """
    Sequences the relay stages and maps every failure to a typed outcome.

    Transient failures (``retryable`` errors) of estimation, sponsorship and
    submission are retried up to ``retry.transient_retries`` times. An
    ambiguous submission is never retried.
    """

    def __init__(
        self,
        encoder: IntentEncoder,
        estimator: ResourceEstimator,
        builder: OperationBuilder,
        paymaster: PaymasterClient,
        bundler: BundlerClient,
        poller: ReceiptPoller,
        *,
        entry_point: str,
        chain_id: int,
        retry: Optional[RetryConfig] = None,
        signer: Optional[OperationSigner] = None,
        relay_logger: Optional[RelayLogger] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self._encoder = encoder
        self._estimator = estimator
        self._builder = builder
        self._paymaster = paymaster
        self._bundler = bundler
        self._poller = poller
        self._entry_point = entry_point
        self._chain_id = chain_id
        self._retry = retry or RetryConfig()
        self._signer = signer
        self._relay_logger = relay_logger or RelayLogger(config=LoggingConfig())
        self._sleep = sleep
        self._rpc_clients: List[JsonRpcClient] = []

    @classmethod
    def from_config(
        cls,
        config: Optional[RelayConfig] = None,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        encoder: Optional[IntentEncoder] = None,
        signer: Optional[OperationSigner] = None,
    ) -> "RelayCoordinator":
        """Wire every stage from configuration, optionally over one shared HTTP client."""
        config = config or get_config()

        execution_rpc = JsonRpcClient(config.execution, http_client)
        sponsor_rpc = JsonRpcClient(config.sponsor, http_client)
        bundler_rpc = JsonRpcClient(config.bundler, http_client)

        bundler = BundlerClient(bundler_rpc)
        coordinator = cls(
            encoder=encoder or default_encoder(),
            estimator=ResourceEstimator(ExecutionClient(execution_rpc)),
            builder=OperationBuilder(config.policy),
            paymaster=PaymasterClient(sponsor_rpc, config.sponsorship_policy_id),
            bundler=bundler,
            poller=ReceiptPoller(bundler, config.polling),
            entry_point=config.entry_point,
            chain_id=config.chain.chain_id,
            retry=config.retry,
            signer=signer,
            relay_logger=RelayLogger(config=config.logging),
        )
        coordinator._rpc_clients = [execution_rpc, sponsor_rpc, bundler_rpc]
        return coordinator

    @property
    def entry_point(self) -> str:
        return self._entry_point

    @property
    def poller(self) -> ReceiptPoller:
        return self._poller

    async def relay(
        self,
        intent: CallIntent,
        caller: str,
        signature: Optional[str] = None,
        deadline_seconds: Optional[float] = None,
    ) -> Settlement:
        """
        Relay one intent on behalf of ``caller``.

        Args:
            intent: The contract call to make
            caller: Sender of the operation
            signature: Ready-made account signature; otherwise the configured
                signer is used, or the placeholder kept if there is none
            deadline_seconds: Overall deadline for the run

        Returns:
            Included with the settlement transaction hash, or Failed
        """
        run = _RunState(run_id=new_run_id())

        try:
            async with asyncio.timeout(deadline_seconds):
                settlement: Settlement = await self._run(run, intent, caller, signature)
        except TimeoutError:
            settlement = Failed.from_error(self._deadline_error(run, deadline_seconds))
        except RelayError as exc:
            settlement = Failed.from_error(exc)
        except asyncio.CancelledError:
            logger.warning(
                f"[{run.run_id}] Relay cancelled during {run.stage.value}"
                + (f"; submitted operation {run.user_op_hash} is left as is" if run.user_op_hash else "")
            )
            raise

        self._relay_logger.log_settlement(run.run_id, settlement)
        return settlement

    async def track(self, user_op_hash: str) -> Settlement:
        """Poll an already-submitted operation; Included or a TimedOut failure."""
        run_id = new_run_id()
        try:
            async with self._relay_logger.stage_context(Stage.POLL, run_id, user_op_hash=user_op_hash):
                receipt = await self._poller.wait(user_op_hash)
            settlement: Settlement = Included(
                transaction_hash=receipt.settlement_hash,
                user_op_hash=user_op_hash,
                success=receipt.success,
            )
        except TimedOut as exc:
            settlement = Failed.from_error(exc)

        self._relay_logger.log_settlement(run_id, settlement)
        return settlement

    async def _run(
        self,
        run: _RunState,
        intent: CallIntent,
        caller: str,
        signature: Optional[str],
    ) -> Settlement:
        run_id = run.run_id

        run.stage = Stage.ENCODE
        async with self._relay_logger.stage_context(Stage.ENCODE, run_id, function=intent.function_signature):
            if not Web3.is_address(caller):
                raise InvalidIntent(f"Invalid caller address: {caller!r}")
            calldata = self._encoder.encode(intent)

        run.stage = Stage.ESTIMATE
        async with self._relay_logger.stage_context(Stage.ESTIMATE, run_id) as ctx:
            estimate: ResourceEstimate = await self._with_retry(
                run, self._estimator.estimate, intent.target_contract, calldata, caller
            )
            ctx.metadata.update(gas_estimate=estimate.gas_estimate, nonce=estimate.nonce)

        run.stage = Stage.BUILD
        async with self._relay_logger.stage_context(Stage.BUILD, run_id):
            user_op = self._builder.build(intent, calldata, estimate, caller)
            run.user_op = user_op

        run.stage = Stage.SPONSOR
        async with self._relay_logger.stage_context(Stage.SPONSOR, run_id) as ctx:
            sponsorship = await self._with_retry(
                run, self._paymaster.sponsor_user_operation, user_op, self._entry_point
            )
            self._builder.apply_sponsorship(user_op, sponsorship)
            ctx.metadata["paymaster"] = sponsorship.paymaster

        run.stage = Stage.SIGN
        async with self._relay_logger.stage_context(Stage.SIGN, run_id):
            await self._attach_signature(user_op, signature)

        missing = user_op.missing_fields()
        if missing:
            raise IncompleteOperation(missing)

        run.stage = Stage.SUBMIT
        async with self._relay_logger.stage_context(Stage.SUBMIT, run_id):
            handle = await self._with_retry(
                run, self._bundler.send_user_operation, user_op, self._entry_point
            )
            run.user_op_hash = handle
        self._relay_logger.log_submission(run_id, handle, user_op.sender, user_op.nonce)

        run.stage = Stage.POLL
        async with self._relay_logger.stage_context(Stage.POLL, run_id, user_op_hash=handle):
            receipt = await self._poller.wait(handle)

        return Included(
            transaction_hash=receipt.settlement_hash,
            user_op_hash=handle,
            success=receipt.success,
        )

    async def _attach_signature(self, user_op: UserOperation, signature: Optional[str]) -> None:
        if signature:
            user_op.signature = signature
        elif self._signer is not None:
            op_hash = user_operation_hash(user_op, self._entry_point, self._chain_id)
            user_op.signature = await self._signer.sign_user_operation(op_hash)

    async def _with_retry(
        self,
        run: _RunState,
        func: Callable[..., Awaitable[T]],
        *args: Any,
    ) -> T:
        """Call a stage, retrying only errors flagged retryable."""
        attempt = 1
        while True:
            try:
                return await func(*args)
            except RelayError as exc:
                if not exc.retryable or attempt >= self._retry.max_attempts:
                    raise
                logger.info(
                    f"[{run.run_id}] {run.stage.value} attempt {attempt} failed "
                    f"({exc.kind.value}: {exc.message}), retrying"
                )
                attempt += 1
                await self._sleep(self._retry.retry_delay_seconds)

    @staticmethod
    def _deadline_error(run: _RunState, deadline_seconds: Optional[float]) -> RelayError:
        """Map an elapsed deadline to the failure that matches the interrupted stage."""
        elapsed = f"Deadline of {deadline_seconds}s elapsed during {run.stage.value}"
        if run.stage is Stage.POLL:
            return TimedOut(f"{elapsed}; the operation may still be included", user_op_hash=run.user_op_hash)
        if run.stage is Stage.SUBMIT:
            nonce = f" (nonce {run.user_op.nonce} for {run.user_op.sender})" if run.user_op else ""
            return SubmissionAmbiguous(f"{elapsed}; the submission may have been accepted{nonce}")
        return DeadlineExceeded(elapsed)

    async def close(self) -> None:
        """Close the JSON-RPC clients created by from_config()."""
        for client in self._rpc_clients:
            await client.close()

    async def __aenter__(self) -> "RelayCoordinator":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
