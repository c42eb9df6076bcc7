"""User operation hashing (entry point v0.7) and signing."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from eth_abi import encode
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount
from web3 import Web3

from .user_operation import UserOperation


def _hex_bytes(value: str) -> bytes:
    return bytes.fromhex(value.removeprefix("0x"))


def _pack_uint128_pair(high: int, low: int) -> bytes:
    return ((int(high) << 128) | int(low)).to_bytes(32, "big")


def user_operation_hash(user_op: UserOperation, entry_point: str, chain_id: int) -> bytes:
    """
    Hash an operation the way EntryPoint v0.7 getUserOpHash() does.

    Gas limits and fees are packed into two bytes32 words; the paymaster
    fields into paymasterAndData.
    """
    packed = encode(
        ["address", "uint256", "bytes32", "bytes32", "bytes32", "uint256", "bytes32", "bytes32"],
        [
            Web3.to_checksum_address(user_op.sender),
            user_op.nonce,
            bytes(Web3.keccak(_hex_bytes(user_op.init_code))),
            bytes(Web3.keccak(_hex_bytes(user_op.call_data))),
            _pack_uint128_pair(user_op.verification_gas_limit, user_op.call_gas_limit),
            user_op.pre_verification_gas,
            _pack_uint128_pair(user_op.max_priority_fee_per_gas, user_op.max_fee_per_gas),
            bytes(Web3.keccak(_hex_bytes(user_op.paymaster_and_data))),
        ],
    )
    return bytes(
        Web3.keccak(
            encode(
                ["bytes32", "address", "uint256"],
                [bytes(Web3.keccak(packed)), Web3.to_checksum_address(entry_point), chain_id],
            )
        )
    )


@runtime_checkable
class OperationSigner(Protocol):
    """Anything that can produce an account signature for an operation hash."""

    async def sign_user_operation(self, user_op_hash: bytes) -> str:
        ...


class LocalAccountSigner:
    """
    Signs with a local key (SimpleAccount owner convention).

    The account contract verifies an EIP-191 personal signature over the
    32-byte user operation hash.
    """

    def __init__(self, account: LocalAccount):
        self._account = account

    @classmethod
    def from_key(cls, private_key: str) -> "LocalAccountSigner":
        return cls(Account.from_key(private_key))

    @property
    def address(self) -> str:
        return self._account.address

    async def sign_user_operation(self, user_op_hash: bytes) -> str:
        signed = self._account.sign_message(encode_defunct(primitive=user_op_hash))
        return "0x" + bytes(signed.signature).hex()
