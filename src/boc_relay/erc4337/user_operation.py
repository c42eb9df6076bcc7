"""UserOperation envelope for ERC-4337 (v0.7 RPC layout)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from eth_abi import encode
from web3 import Web3

# Well-known 65-byte placeholder accepted by SimpleAccount-style validation
# during sponsorship and gas estimation.
DUMMY_SIGNATURE = (
    "0xfffffffffffffffffffffffffffffff0000000000000000000000000000000007"
    "aaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaa1c"
)

REQUIRED_FOR_SUBMISSION = (
    "paymaster",
    "paymaster_verification_gas_limit",
    "paymaster_post_op_gas_limit",
    "paymaster_data",
    "signature",
)


def zero_hex() -> str:
    return "0x"


def _to_hex_int(value: int) -> str:
    return hex(max(0, int(value)))


@dataclass
class UserOperation:
    """
    Account-abstraction operation, filled in stage by stage.

    The builder sets sender, nonce, call data, gas and fee fields; the
    sponsor fills the paymaster fields; the signature starts as a
    placeholder. Only the coordinator handling one run mutates it.
    """
    sender: str
    nonce: int
    call_data: str
    call_gas_limit: int
    verification_gas_limit: int
    pre_verification_gas: int
    max_fee_per_gas: int
    max_priority_fee_per_gas: int
    init_code: str = "0x"
    paymaster: Optional[str] = None
    paymaster_verification_gas_limit: Optional[int] = None
    paymaster_post_op_gas_limit: Optional[int] = None
    paymaster_data: Optional[str] = None
    signature: str = DUMMY_SIGNATURE

    @property
    def is_sponsored(self) -> bool:
        return self.paymaster is not None

    def missing_fields(self) -> list[str]:
        """Required fields still absent; empty when ready for submission."""
        missing = [name for name in REQUIRED_FOR_SUBMISSION if getattr(self, name) in (None, "")]
        return missing

    @property
    def is_complete(self) -> bool:
        return not self.missing_fields()

    @property
    def paymaster_and_data(self) -> str:
        """Packed paymaster field: address | verificationGas(16) | postOpGas(16) | data."""
        if self.paymaster is None:
            return zero_hex()
        return (
            "0x"
            + self.paymaster.lower().removeprefix("0x")
            + int(self.paymaster_verification_gas_limit or 0).to_bytes(16, "big").hex()
            + int(self.paymaster_post_op_gas_limit or 0).to_bytes(16, "big").hex()
            + (self.paymaster_data or "0x").removeprefix("0x")
        )

    @staticmethod
    def encode_execute(to: str, value: int, data: bytes) -> str:
        """Encode SimpleAccount execute() calldata."""
        selector = Web3.keccak(text="execute(address,uint256,bytes)")[:4]
        encoded = encode(["address", "uint256", "bytes"], [to, value, data])
        return "0x" + (bytes(selector) + encoded).hex()

    @staticmethod
    def encode_safe_execute(to: str, value: int, data: bytes) -> str:
        """Encode Safe4337Module executeUserOp() calldata.

        Safe uses executeUserOp(address,uint256,bytes,uint8) where the
        last param is the operation type (0=Call, 1=DelegateCall).
        """
        selector = Web3.keccak(text="executeUserOp(address,uint256,bytes,uint8)")[:4]
        encoded = encode(
            ["address", "uint256", "bytes", "uint8"],
            [to, value, data, 0],  # 0 = Call
        )
        return "0x" + (bytes(selector) + encoded).hex()

    def to_rpc(self) -> dict[str, Any]:
        """Unpacked v0.7 JSON-RPC representation."""
        payload: dict[str, Any] = {
            "sender": self.sender,
            "nonce": _to_hex_int(self.nonce),
            "callData": self.call_data,
            "callGasLimit": _to_hex_int(self.call_gas_limit),
            "verificationGasLimit": _to_hex_int(self.verification_gas_limit),
            "preVerificationGas": _to_hex_int(self.pre_verification_gas),
            "maxFeePerGas": _to_hex_int(self.max_fee_per_gas),
            "maxPriorityFeePerGas": _to_hex_int(self.max_priority_fee_per_gas),
            "signature": self.signature,
        }
        if self.init_code not in ("", "0x"):
            payload["factory"] = self.init_code[:42]
            payload["factoryData"] = "0x" + self.init_code[42:]
        if self.paymaster is not None:
            payload["paymaster"] = self.paymaster
            payload["paymasterVerificationGasLimit"] = _to_hex_int(
                self.paymaster_verification_gas_limit or 0
            )
            payload["paymasterPostOpGasLimit"] = _to_hex_int(self.paymaster_post_op_gas_limit or 0)
            payload["paymasterData"] = self.paymaster_data or zero_hex()
        return payload
