"""
Direct-call path for callers who can pay their own gas.

When the caller's native balance is above a minimum, the router returns an
unsigned transaction request for the caller's wallet to sign and send
instead of relaying a sponsored operation.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

import httpx
from web3 import Web3

from .config import RelayConfig, get_config
from .coordinator import RelayCoordinator
from .errors import DeadlineExceeded, EstimationUnavailable, InvalidIntent, RelayError
from .estimator import ResourceEstimator
from .execution import ExecutionClient, ExecutionRpcError
from .intent import CallIntent, IntentEncoder, default_encoder
from .rpc import JsonRpcClient, RpcTransportError
from .settlement import Failed, Settlement

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DirectCall:
    """An unsigned transaction for the caller's own wallet."""
    to: str
    data: str
    gas: int
    gas_price: int
    value: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": "signAndSend",
            "transaction": {
                "to": self.to,
                "data": self.data,
                "value": self.value,
                "gas": self.gas,
                "gasPrice": self.gas_price,
            },
        }


class DirectCallPlanner:
    """Balance check and transaction request assembly for the direct path."""

    def __init__(
        self,
        execution: ExecutionClient,
        encoder: IntentEncoder,
        min_balance_wei: int = 10**15,
    ):
        self._execution = execution
        self._encoder = encoder
        self._estimator = ResourceEstimator(execution)
        self._min_balance_wei = min_balance_wei

    @property
    def min_balance_wei(self) -> int:
        return self._min_balance_wei

    async def can_pay_gas(self, caller: str) -> bool:
        """
        Whether the caller holds more than the minimum native balance.

        Raises:
            EstimationUnavailable: Balance lookup failed
        """
        try:
            balance = await self._execution.get_balance(caller)
        except (ExecutionRpcError, RpcTransportError) as exc:
            raise EstimationUnavailable(f"Balance lookup failed: {exc}") from exc
        logger.debug(f"Balance of {caller}: {balance} wei (minimum {self._min_balance_wei})")
        return balance > self._min_balance_wei

    async def plan(self, intent: CallIntent, caller: str) -> DirectCall:
        """
        Build the transaction request the caller's wallet should send.

        Raises:
            InvalidIntent: Intent cannot be encoded
            SimulationReverted: The call reverts
            EstimationUnavailable: Gas or gas price lookup failed
        """
        calldata = self._encoder.encode(intent)
        gas = await self._estimator.estimate_gas(intent.target_contract, calldata, caller)
        try:
            gas_price = await self._execution.get_gas_price()
        except (ExecutionRpcError, RpcTransportError) as exc:
            raise EstimationUnavailable(f"Gas price lookup failed: {exc}") from exc

        return DirectCall(
            to=Web3.to_checksum_address(intent.target_contract),
            data="0x" + calldata.hex(),
            gas=gas,
            gas_price=gas_price,
        )


class GaslessRouter:
    """Chooses between the direct-call path and the sponsored relay."""

    def __init__(
        self,
        planner: DirectCallPlanner,
        coordinator: RelayCoordinator,
        execution_rpc: Optional[JsonRpcClient] = None,
    ):
        self._planner = planner
        self._coordinator = coordinator
        self._execution_rpc = execution_rpc

    @classmethod
    def from_config(
        cls,
        config: Optional[RelayConfig] = None,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        encoder: Optional[IntentEncoder] = None,
    ) -> "GaslessRouter":
        config = config or get_config()
        encoder = encoder or default_encoder()
        execution_rpc = JsonRpcClient(config.execution, http_client)
        planner = DirectCallPlanner(
            ExecutionClient(execution_rpc),
            encoder,
            min_balance_wei=config.direct_min_balance_wei,
        )
        coordinator = RelayCoordinator.from_config(config, http_client=http_client, encoder=encoder)
        return cls(planner, coordinator, execution_rpc)

    async def dispatch(
        self,
        intent: CallIntent,
        caller: str,
        signature: Optional[str] = None,
        deadline_seconds: Optional[float] = None,
    ) -> Union[DirectCall, Settlement]:
        """
        Return a DirectCall when the caller can pay, otherwise relay the intent.

        Failures of the direct path come back as a Failed settlement. The
        deadline covers the balance check and direct planning; the relay
        gets whatever remains of it.
        """
        if not Web3.is_address(caller):
            return Failed.from_error(InvalidIntent(f"Invalid caller address: {caller!r}"))

        loop = asyncio.get_running_loop()
        started = loop.time()
        try:
            async with asyncio.timeout(deadline_seconds):
                if await self._planner.can_pay_gas(caller):
                    return await self._planner.plan(intent, caller)
        except TimeoutError:
            logger.info(f"Direct path for {caller} ran past the {deadline_seconds}s deadline")
            return Failed.from_error(
                DeadlineExceeded(f"Deadline of {deadline_seconds}s elapsed before relaying")
            )
        except RelayError as exc:
            logger.info(f"Direct path for {caller} failed: {exc.kind.value}: {exc.message}")
            return Failed.from_error(exc)

        remaining = None
        if deadline_seconds is not None:
            remaining = max(0.0, deadline_seconds - (loop.time() - started))
        return await self._coordinator.relay(
            intent, caller, signature=signature, deadline_seconds=remaining
        )

    async def close(self) -> None:
        await self._coordinator.close()
        if self._execution_rpc is not None:
            await self._execution_rpc.close()

    async def __aenter__(self) -> "GaslessRouter":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
