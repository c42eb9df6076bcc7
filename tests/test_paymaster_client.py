from __future__ import annotations

import httpx
import pytest

from boc_relay.config import ENTRYPOINT_V07
from boc_relay.erc4337.paymaster_client import PaymasterClient
from boc_relay.erc4337.user_operation import UserOperation
from boc_relay.errors import ErrorKind, SponsorshipDenied, SponsorshipUnavailable

from conftest import CALLER, PAYMASTER, ok, rpc_error, sponsorship_result


def _user_op() -> UserOperation:
    return UserOperation(
        sender=CALLER,
        nonce=5,
        call_data="0xdeadbeef",
        call_gas_limit=96_000,
        verification_gas_limit=150_000,
        pre_verification_gas=50_000,
        max_fee_per_gas=10**9,
        max_priority_fee_per_gas=10**9,
    )


@pytest.mark.asyncio
async def test_sponsorship_request_and_result(rpc, server) -> None:
    server.on("pm_sponsorUserOperation", ok(sponsorship_result()))

    result = await PaymasterClient(rpc).sponsor_user_operation(_user_op(), ENTRYPOINT_V07)

    assert result.paymaster == PAYMASTER
    assert result.paymaster_verification_gas_limit == 100_000
    assert result.call_gas_limit is None
    user_op_payload, entry_point = server.params("pm_sponsorUserOperation")
    assert entry_point == ENTRYPOINT_V07
    assert user_op_payload["sender"] == CALLER
    assert "paymaster" not in user_op_payload


@pytest.mark.asyncio
async def test_sponsorship_policy_id_is_forwarded(rpc, server) -> None:
    server.on("pm_sponsorUserOperation", ok(sponsorship_result()))

    await PaymasterClient(rpc, sponsorship_policy_id="sp_boc").sponsor_user_operation(_user_op(), ENTRYPOINT_V07)

    assert server.params("pm_sponsorUserOperation")[2] == {"sponsorshipPolicyId": "sp_boc"}


@pytest.mark.asyncio
async def test_error_response_is_denial_with_reason(rpc, server) -> None:
    server.on("pm_sponsorUserOperation", rpc_error(-32000, "rate limited"))

    with pytest.raises(SponsorshipDenied) as exc_info:
        await PaymasterClient(rpc).sponsor_user_operation(_user_op(), ENTRYPOINT_V07)

    assert exc_info.value.message == "rate limited"
    assert exc_info.value.code == -32000
    assert exc_info.value.kind is ErrorKind.SPONSORSHIP_DENIED
    assert not exc_info.value.retryable


@pytest.mark.asyncio
async def test_transport_failure_is_unavailable(rpc, server) -> None:
    server.on("pm_sponsorUserOperation", httpx.ReadTimeout("timed out"))

    with pytest.raises(SponsorshipUnavailable) as exc_info:
        await PaymasterClient(rpc).sponsor_user_operation(_user_op(), ENTRYPOINT_V07)

    assert exc_info.value.retryable


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "result",
    [
        None,
        "0xdeadbeef",
        {"paymaster": "not-an-address", "paymasterVerificationGasLimit": "0x1",
         "paymasterPostOpGasLimit": "0x1", "paymasterData": "0x"},
        {"paymaster": PAYMASTER},
        sponsorship_result(paymasterData="0xabc"),
    ],
)
async def test_malformed_payload_is_unavailable(rpc, server, result) -> None:
    server.on("pm_sponsorUserOperation", ok(result))

    with pytest.raises(SponsorshipUnavailable, match="invalid sponsorship payload"):
        await PaymasterClient(rpc).sponsor_user_operation(_user_op(), ENTRYPOINT_V07)
