"""Read-only calls against the execution network node."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from .rpc import JsonRpcClient, RpcFailure, RpcTransportError
from .schemas import parse_quantity

logger = logging.getLogger(__name__)


class ExecutionRpcError(Exception):
    """The node answered with a JSON-RPC error object."""

    def __init__(self, method: str, failure: RpcFailure):
        self.method = method
        self.code = failure.code
        self.data = failure.data
        self.rpc_message = failure.message
        super().__init__(f"{method} failed: {failure}")


class ExecutionClient:
    """
    Typed wrapper over the node's eth_* namespace.

    Raises ExecutionRpcError for error responses and lets RpcTransportError
    propagate for transport failures; callers decide how to classify them.
    """

    def __init__(self, rpc: JsonRpcClient):
        self._rpc = rpc

    async def _call(self, method: str, params: list) -> Any:
        response = await self._rpc.call(method, params)
        if isinstance(response, RpcFailure):
            raise ExecutionRpcError(method, response)
        return response.result

    async def _call_quantity(self, method: str, params: list) -> int:
        result = await self._call(method, params)
        try:
            return parse_quantity(result)
        except ValueError as exc:
            raise RpcTransportError(
                f"{method}: node returned malformed quantity {result!r}",
                request_sent=True,
            ) from exc

    async def estimate_gas(self, tx: Dict[str, Any], block: str = "latest") -> int:
        """Estimate gas for a call (simulates it)."""
        return await self._call_quantity("eth_estimateGas", [tx, block])

    async def get_transaction_count(self, address: str, block: str = "pending") -> int:
        """Get transaction count (nonce) for address."""
        return await self._call_quantity("eth_getTransactionCount", [address, block])

    async def get_balance(self, address: str, block: str = "latest") -> int:
        """Get native token balance for address in wei."""
        return await self._call_quantity("eth_getBalance", [address, block])

    async def get_gas_price(self) -> int:
        """Get current gas price in wei."""
        return await self._call_quantity("eth_gasPrice", [])

    async def chain_id(self) -> int:
        return await self._call_quantity("eth_chainId", [])

    async def eth_call(self, tx: Dict[str, Any], block: str = "latest") -> Optional[str]:
        """Execute a call without creating a transaction."""
        return await self._call("eth_call", [tx, block])
