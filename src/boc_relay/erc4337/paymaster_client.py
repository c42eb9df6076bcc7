"""ERC-4337 paymaster (sponsor) client."""

from __future__ import annotations

import logging
from typing import Any, Optional

from pydantic import ValidationError

from ..errors import SponsorshipDenied, SponsorshipUnavailable
from ..rpc import JsonRpcClient, RpcFailure, RpcTransportError
from ..schemas import SponsorshipResult
from .user_operation import UserOperation

logger = logging.getLogger(__name__)


class PaymasterClient:
    """
    Pimlico-compatible sponsor client (pm_sponsorUserOperation).

    A JSON-RPC error means the sponsor refused (policy, rate limit) and is
    terminal. Transport failures and malformed payloads are reported as
    SponsorshipUnavailable; the request is side-effect free, so the
    coordinator may resend it unchanged.
    """

    def __init__(self, rpc: JsonRpcClient, sponsorship_policy_id: Optional[str] = None):
        self._rpc = rpc
        self._sponsorship_policy_id = sponsorship_policy_id

    def _params(self, user_op: UserOperation, entry_point: str) -> list[Any]:
        params: list[Any] = [user_op.to_rpc(), entry_point]
        if self._sponsorship_policy_id:
            params.append({"sponsorshipPolicyId": self._sponsorship_policy_id})
        return params

    async def sponsor_user_operation(self, user_op: UserOperation, entry_point: str) -> SponsorshipResult:
        """
        Ask the sponsor to pay for an operation.

        Raises:
            SponsorshipDenied: The sponsor returned a JSON-RPC error
            SponsorshipUnavailable: Transport failure or invalid payload
        """
        try:
            response = await self._rpc.call("pm_sponsorUserOperation", self._params(user_op, entry_point))
        except RpcTransportError as exc:
            raise SponsorshipUnavailable(f"Sponsor unreachable: {exc}") from exc

        if isinstance(response, RpcFailure):
            logger.info(f"Sponsorship denied for {user_op.sender}: {response}")
            raise SponsorshipDenied(response.message, code=response.code, data=response.data)

        if not isinstance(response.result, dict):
            raise SponsorshipUnavailable("Paymaster returned invalid sponsorship payload")
        try:
            result = SponsorshipResult.model_validate(response.result)
        except ValidationError as exc:
            raise SponsorshipUnavailable(
                f"Paymaster returned invalid sponsorship payload: {exc.error_count()} errors"
            ) from exc

        logger.debug(f"Sponsorship granted for {user_op.sender} by paymaster {result.paymaster}")
        return result
