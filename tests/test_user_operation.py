from __future__ import annotations

from dataclasses import replace

import pytest
from eth_account import Account
from eth_account.messages import encode_defunct
from web3 import Web3

from boc_relay.config import ENTRYPOINT_V07
from boc_relay.erc4337.signer import LocalAccountSigner, OperationSigner, user_operation_hash
from boc_relay.erc4337.user_operation import DUMMY_SIGNATURE, UserOperation, zero_hex

from conftest import CALLER, PAYMASTER

TEST_KEY = "0x" + "11" * 32


def _sample_user_op(**overrides) -> UserOperation:
    values = dict(
        sender=CALLER,
        nonce=5,
        call_data="0xdeadbeef",
        call_gas_limit=96_000,
        verification_gas_limit=150_000,
        pre_verification_gas=50_000,
        max_fee_per_gas=1_000_000_000,
        max_priority_fee_per_gas=1_000_000_000,
    )
    values.update(overrides)
    return UserOperation(**values)


def _sponsored(user_op: UserOperation) -> UserOperation:
    return replace(
        user_op,
        paymaster=PAYMASTER,
        paymaster_verification_gas_limit=100_000,
        paymaster_post_op_gas_limit=50_000,
        paymaster_data="0xdeadbeef",
    )


def test_unsponsored_operation_is_incomplete() -> None:
    user_op = _sample_user_op()

    assert not user_op.is_sponsored
    assert not user_op.is_complete
    assert user_op.missing_fields() == [
        "paymaster",
        "paymaster_verification_gas_limit",
        "paymaster_post_op_gas_limit",
        "paymaster_data",
    ]


def test_sponsored_operation_is_complete() -> None:
    user_op = _sponsored(_sample_user_op())
    assert user_op.is_complete


def test_empty_paymaster_data_is_accepted_but_missing_is_not() -> None:
    assert _sponsored(_sample_user_op()).missing_fields() == []
    assert replace(_sponsored(_sample_user_op()), paymaster_data=zero_hex()).is_complete
    assert replace(_sponsored(_sample_user_op()), signature="").missing_fields() == ["signature"]


def test_to_rpc_unsponsored_omits_paymaster_fields() -> None:
    payload = _sample_user_op().to_rpc()

    assert payload["sender"] == CALLER
    assert payload["nonce"] == "0x5"
    assert payload["callGasLimit"] == hex(96_000)
    assert payload["signature"] == DUMMY_SIGNATURE
    assert "paymaster" not in payload
    assert "factory" not in payload


def test_to_rpc_sponsored() -> None:
    payload = _sponsored(_sample_user_op()).to_rpc()

    assert payload["paymaster"] == PAYMASTER
    assert payload["paymasterVerificationGasLimit"] == hex(100_000)
    assert payload["paymasterPostOpGasLimit"] == hex(50_000)
    assert payload["paymasterData"] == "0xdeadbeef"


def test_to_rpc_splits_init_code() -> None:
    factory = "0x" + "33" * 20
    payload = _sample_user_op(init_code=factory + "cafe").to_rpc()

    assert payload["factory"] == factory
    assert payload["factoryData"] == "0xcafe"


def test_paymaster_and_data_packing() -> None:
    packed = _sponsored(_sample_user_op()).paymaster_and_data

    body = packed[2:]
    assert body[:40] == PAYMASTER[2:].lower()
    assert int(body[40:72], 16) == 100_000
    assert int(body[72:104], 16) == 50_000
    assert body[104:] == "deadbeef"
    assert _sample_user_op().paymaster_and_data == zero_hex()


def test_encode_execute_selector() -> None:
    calldata = UserOperation.encode_execute(PAYMASTER, 0, b"\x01")
    # execute(address,uint256,bytes)
    assert calldata.startswith("0xb61d27f6")


def test_encode_safe_execute_selector() -> None:
    calldata = UserOperation.encode_safe_execute(PAYMASTER, 0, b"\x01")
    selector = Web3.keccak(text="executeUserOp(address,uint256,bytes,uint8)")[:4]
    assert calldata.startswith("0x" + bytes(selector).hex())
    # operation type 0 (Call) is the last static word
    assert calldata[2 + 8 + 64 * 3:2 + 8 + 64 * 4] == "0" * 64


def test_user_operation_hash_is_deterministic_and_bound_to_chain() -> None:
    user_op = _sponsored(_sample_user_op())

    first = user_operation_hash(user_op, ENTRYPOINT_V07, 42220)
    assert len(first) == 32
    assert first == user_operation_hash(user_op, ENTRYPOINT_V07, 42220)
    assert first != user_operation_hash(user_op, ENTRYPOINT_V07, 44787)
    assert first != user_operation_hash(replace(user_op, nonce=6), ENTRYPOINT_V07, 42220)


def test_user_operation_hash_matches_entry_point_word_layout() -> None:
    # getUserOpHash preimage written out word by word
    empty_code_hash = "c5d2460186f7233c927e7db2dcc703c0e500b653ca82273b7bfad8045d85a470"
    paymaster_and_data = PAYMASTER[2:].lower() + f"{100_000:032x}" + f"{50_000:032x}" + "deadbeef"
    words = [
        "0" * 24 + CALLER[2:].lower(),
        f"{5:064x}",
        empty_code_hash,
        Web3.keccak(hexstr="0xdeadbeef").hex().removeprefix("0x"),
        f"{150_000:032x}{96_000:032x}",
        f"{50_000:064x}",
        f"{10**9:032x}{10**9:032x}",
        Web3.keccak(hexstr="0x" + paymaster_and_data).hex().removeprefix("0x"),
    ]
    inner = Web3.keccak(hexstr="0x" + "".join(words)).hex().removeprefix("0x")
    outer = Web3.keccak(
        hexstr="0x" + inner + "0" * 24 + ENTRYPOINT_V07[2:].lower() + f"{42220:064x}"
    )

    assert user_operation_hash(_sponsored(_sample_user_op()), ENTRYPOINT_V07, 42220) == bytes(outer)


def test_user_operation_hash_ignores_signature() -> None:
    user_op = _sponsored(_sample_user_op())
    signed = replace(user_op, signature="0x" + "ab" * 65)

    assert user_operation_hash(user_op, ENTRYPOINT_V07, 42220) == user_operation_hash(
        signed, ENTRYPOINT_V07, 42220
    )


@pytest.mark.asyncio
async def test_local_account_signer_signs_hash() -> None:
    signer = LocalAccountSigner.from_key(TEST_KEY)
    op_hash = user_operation_hash(_sponsored(_sample_user_op()), ENTRYPOINT_V07, 42220)

    signature = await signer.sign_user_operation(op_hash)

    assert isinstance(signer, OperationSigner)
    assert signature.startswith("0x")
    assert len(signature) == 2 + 130
    recovered = Account.recover_message(encode_defunct(primitive=op_hash), signature=signature)
    assert recovered == signer.address
