"""
Gas and nonce estimation against the execution network.

Simulation errors are split in two: a reverting call is the caller's
problem and fails immediately, anything else is an infrastructure fault the
coordinator may retry.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Optional

from eth_abi import decode
from eth_abi.exceptions import DecodingError

from .errors import EstimationUnavailable, SimulationReverted
from .execution import ExecutionClient, ExecutionRpcError
from .rpc import RpcTransportError

logger = logging.getLogger(__name__)

ERROR_STRING_SELECTOR = "08c379a0"  # Error(string)
PANIC_SELECTOR = "4e487b71"  # Panic(uint256)

# Geth and most clients use code 3 for reverts carrying revert data
REVERT_ERROR_CODE = 3

_EMBEDDED_ERROR_RE = re.compile(r"0x08c379a0[0-9a-fA-F]*")


@dataclass(frozen=True)
class ResourceEstimate:
    """Output of estimation: simulated gas and the sender's nonce."""
    gas_estimate: int
    nonce: int


def _revert_data(data: Any) -> Optional[str]:
    """Pull hex revert data out of an error's data field."""
    if isinstance(data, str) and data.startswith("0x"):
        return data
    if isinstance(data, dict):
        for key in ("data", "result"):
            value = data.get(key)
            if isinstance(value, str) and value.startswith("0x"):
                return value
    return None


def decode_revert_data(data: str) -> Optional[str]:
    """Decode Error(string) / Panic(uint256) revert payloads."""
    body = data[2:] if data.startswith("0x") else data
    selector, payload = body[:8].lower(), body[8:]
    try:
        raw = bytes.fromhex(payload)
    except ValueError:
        return None
    if selector == ERROR_STRING_SELECTOR:
        try:
            (reason,) = decode(["string"], raw)
        except DecodingError:
            return None
        return reason
    if selector == PANIC_SELECTOR:
        try:
            (code,) = decode(["uint256"], raw)
        except DecodingError:
            return "Panic"
        return f"Panic(0x{code:02x})"
    return None


def extract_revert_reason(message: str, data: Any = None) -> Optional[str]:
    """Extract a human-readable revert reason from an RPC error."""
    revert_data = _revert_data(data)
    if revert_data:
        decoded = decode_revert_data(revert_data)
        if decoded:
            return decoded

    lowered = message.lower()
    if "execution reverted:" in lowered:
        idx = lowered.find("execution reverted:")
        reason = message[idx + len("execution reverted:"):].strip()
        return reason or None

    # Some nodes embed the revert data in the message text
    match = _EMBEDDED_ERROR_RE.search(message)
    if match:
        return decode_revert_data(match.group(0))

    return None


def is_revert(error: ExecutionRpcError) -> bool:
    """Whether an estimation error means the call itself reverts."""
    if error.code == REVERT_ERROR_CODE:
        return True
    return "revert" in error.rpc_message.lower()


class ResourceEstimator:
    """
    Estimates call gas and fetches the sender nonce.

    Two independent reads: eth_estimateGas for the intent calldata sent
    from the caller, and eth_getTransactionCount for the caller.
    """

    def __init__(self, execution: ExecutionClient, nonce_block: str = "pending"):
        self._execution = execution
        self._nonce_block = nonce_block

    async def estimate_gas(self, target_contract: str, calldata: bytes, caller: str) -> int:
        """
        Simulate the call from ``caller`` and return its gas estimate.

        Raises:
            SimulationReverted: The simulated call reverts
            EstimationUnavailable: The node is unreachable or misbehaving
        """
        tx = {
            "from": caller,
            "to": target_contract,
            "data": "0x" + calldata.hex(),
        }

        try:
            return await self._execution.estimate_gas(tx)
        except ExecutionRpcError as exc:
            if is_revert(exc):
                reason = extract_revert_reason(exc.rpc_message, exc.data)
                logger.info(f"Simulation reverted for {target_contract}: {reason or exc.rpc_message}")
                raise SimulationReverted(
                    f"Call reverted: {reason or exc.rpc_message}",
                    revert_reason=reason,
                ) from exc
            raise EstimationUnavailable(f"Gas estimation failed: {exc}") from exc
        except RpcTransportError as exc:
            raise EstimationUnavailable(f"Execution network unreachable: {exc}") from exc

    async def estimate(self, target_contract: str, calldata: bytes, caller: str) -> ResourceEstimate:
        """
        Simulate the call and read the nonce.

        Raises:
            SimulationReverted: The simulated call reverts
            EstimationUnavailable: The node is unreachable or misbehaving
        """
        gas_estimate = await self.estimate_gas(target_contract, calldata, caller)

        try:
            nonce = await self._execution.get_transaction_count(caller, self._nonce_block)
        except (ExecutionRpcError, RpcTransportError) as exc:
            raise EstimationUnavailable(f"Nonce lookup failed: {exc}") from exc

        if gas_estimate <= 0:
            raise EstimationUnavailable(f"Node returned non-positive gas estimate {gas_estimate}")

        logger.debug(f"Estimated gas={gas_estimate} nonce={nonce} for {caller}")
        return ResourceEstimate(gas_estimate=gas_estimate, nonce=nonce)
