"""Assembly of unsponsored UserOperations from intent, calldata and estimates."""

from __future__ import annotations

import logging

from web3 import Web3

from ..config import OperationPolicy
from ..errors import InvalidIntent
from ..estimator import ResourceEstimate
from ..intent import CallIntent
from ..schemas import SponsorshipResult
from .user_operation import DUMMY_SIGNATURE, UserOperation

logger = logging.getLogger(__name__)


class OperationBuilder:
    """
    Pure assembly of the operation envelope.

    Applies the policy fee ceilings, buffers the call gas estimate and never
    lets verification or pre-verification gas fall below the policy floors
    (the bundler enforces those at submission, not at simulation).
    """

    def __init__(self, policy: OperationPolicy):
        self._policy = policy

    @property
    def policy(self) -> OperationPolicy:
        return self._policy

    def wrap_call_data(self, intent: CallIntent, calldata: bytes) -> str:
        """Wrap intent calldata into the smart account's execute call."""
        target = Web3.to_checksum_address(intent.target_contract)
        fmt = self._policy.execute_format
        if fmt == "simple":
            return UserOperation.encode_execute(target, 0, calldata)
        if fmt == "safe":
            return UserOperation.encode_safe_execute(target, 0, calldata)
        return "0x" + calldata.hex()

    def call_gas_limit(self, gas_estimate: int) -> int:
        buffered = gas_estimate * (100 + self._policy.call_gas_buffer_percent) // 100
        return max(gas_estimate, buffered)

    def build(
        self,
        intent: CallIntent,
        calldata: bytes,
        estimate: ResourceEstimate,
        sender: str,
    ) -> UserOperation:
        """
        Build an unsponsored operation with a placeholder signature.

        Raises:
            InvalidIntent: Malformed sender, calldata or estimate
        """
        if not Web3.is_address(sender):
            raise InvalidIntent(f"Invalid sender address: {sender!r}")
        if not calldata:
            raise InvalidIntent("Calldata is empty")
        if estimate.gas_estimate <= 0:
            raise InvalidIntent(f"Gas estimate must be positive, got {estimate.gas_estimate}")
        if estimate.nonce < 0:
            raise InvalidIntent(f"Nonce must not be negative, got {estimate.nonce}")

        policy = self._policy
        user_op = UserOperation(
            sender=Web3.to_checksum_address(sender),
            nonce=estimate.nonce,
            call_data=self.wrap_call_data(intent, calldata),
            call_gas_limit=self.call_gas_limit(estimate.gas_estimate),
            verification_gas_limit=max(policy.verification_gas_limit, policy.verification_gas_floor),
            pre_verification_gas=max(policy.pre_verification_gas, policy.pre_verification_gas_floor),
            max_fee_per_gas=policy.max_fee_per_gas,
            max_priority_fee_per_gas=policy.max_priority_fee_per_gas,
            signature=DUMMY_SIGNATURE,
        )

        logger.debug(
            f"Built operation sender={user_op.sender} nonce={user_op.nonce} "
            f"callGas={user_op.call_gas_limit} verificationGas={user_op.verification_gas_limit}"
        )
        return user_op

    def apply_sponsorship(self, user_op: UserOperation, sponsorship: SponsorshipResult) -> UserOperation:
        """Merge sponsor fields (and any gas re-estimates) into the operation."""
        policy = self._policy
        user_op.paymaster = Web3.to_checksum_address(sponsorship.paymaster)
        user_op.paymaster_verification_gas_limit = sponsorship.paymaster_verification_gas_limit
        user_op.paymaster_post_op_gas_limit = sponsorship.paymaster_post_op_gas_limit
        user_op.paymaster_data = sponsorship.paymaster_data

        if sponsorship.call_gas_limit is not None:
            user_op.call_gas_limit = sponsorship.call_gas_limit
        if sponsorship.verification_gas_limit is not None:
            user_op.verification_gas_limit = max(
                sponsorship.verification_gas_limit, policy.verification_gas_floor
            )
        if sponsorship.pre_verification_gas is not None:
            user_op.pre_verification_gas = max(
                sponsorship.pre_verification_gas, policy.pre_verification_gas_floor
            )
        return user_op
