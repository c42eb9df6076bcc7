"""
Pytest configuration for boc-relay tests.

Fake JSON-RPC endpoints run in-process on httpx.MockTransport.
"""
from __future__ import annotations

import json
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import httpx
import pytest

from boc_relay.config import (
    CHAINS,
    EndpointConfig,
    LoggingConfig,
    PollingConfig,
    RelayConfig,
    RetryConfig,
    set_config,
)
from boc_relay.rpc import JsonRpcClient

CALLER = "0x1234567890123456789012345678901234567890"
TARGET = "0xabc0000000000000000000000000000000000abc"
PAYMASTER = "0x2222222222222222222222222222222222222222"
TX_HASH = "0x" + "a" * 64
USER_OP_HASH = "0x" + "b" * 64

Reply = Union[Dict[str, Any], Exception, httpx.Response, Callable[[list], Dict[str, Any]]]


def ok(result: Any) -> Dict[str, Any]:
    """JSON-RPC success body fragment."""
    return {"result": result}


def rpc_error(code: int, message: str, data: Any = None) -> Dict[str, Any]:
    """JSON-RPC error body fragment."""
    error: Dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return {"error": error}


def sponsorship_result(**overrides: Any) -> Dict[str, Any]:
    result = {
        "paymaster": PAYMASTER,
        "paymasterVerificationGasLimit": "0x186a0",
        "paymasterPostOpGasLimit": "0xc350",
        "paymasterData": "0xdeadbeef",
    }
    result.update(overrides)
    return result


class FakeRpcServer:
    """
    Scripted JSON-RPC server.

    Each method gets a queue of replies; the last reply repeats once the
    queue is drained. Every request is recorded in ``calls``.
    """

    def __init__(self):
        self._replies: Dict[str, List[Reply]] = {}
        self.calls: List[Tuple[str, list]] = []

    def on(self, method: str, *replies: Reply) -> "FakeRpcServer":
        self._replies[method] = list(replies)
        return self

    def count(self, method: str) -> int:
        return sum(1 for name, _ in self.calls if name == method)

    def params(self, method: str, index: int = -1) -> list:
        matching = [params for name, params in self.calls if name == method]
        return matching[index]

    def handle(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        method = body["method"]
        self.calls.append((method, body["params"]))

        queue = self._replies.get(method)
        if not queue:
            return httpx.Response(
                200,
                json={"jsonrpc": "2.0", "id": body["id"], **rpc_error(-32601, "Method not found")},
            )
        reply = queue.pop(0) if len(queue) > 1 else queue[0]

        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, httpx.Response):
            return reply
        if callable(reply):
            reply = reply(body["params"])
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], **reply})

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handle))


class SleepRecorder:
    """Drop-in for asyncio.sleep that returns immediately."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def server() -> FakeRpcServer:
    return FakeRpcServer()


@pytest.fixture
async def http_client(server: FakeRpcServer):
    client = server.client()
    yield client
    await client.aclose()


@pytest.fixture
def endpoint() -> EndpointConfig:
    return EndpointConfig(url="https://rpc.test/v1?apikey=secret", timeout_seconds=2.0)


@pytest.fixture
def rpc(endpoint: EndpointConfig, http_client: httpx.AsyncClient) -> JsonRpcClient:
    return JsonRpcClient(endpoint, http_client)


@pytest.fixture
def no_sleep() -> SleepRecorder:
    return SleepRecorder()


def make_config(
    polling: Optional[PollingConfig] = None,
    retry: Optional[RetryConfig] = None,
    **overrides: Any,
) -> RelayConfig:
    values: Dict[str, Any] = dict(
        chain=CHAINS["celo"],
        execution=EndpointConfig(url="https://node.test"),
        sponsor=EndpointConfig(url="https://sponsor.test"),
        bundler=EndpointConfig(url="https://sponsor.test"),
        polling=polling or PollingConfig(max_attempts=30, interval_seconds=0.0),
        retry=retry or RetryConfig(transient_retries=1, retry_delay_seconds=0.0),
        logging=LoggingConfig(),
    )
    values.update(overrides)
    return RelayConfig(**values)


@pytest.fixture
def relay_config() -> RelayConfig:
    return make_config()


@pytest.fixture(autouse=True)
def global_config(relay_config: RelayConfig):
    """Install a test configuration as the process default."""
    set_config(relay_config)
    yield relay_config
    set_config(None)
