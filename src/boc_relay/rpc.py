"""
Minimal async JSON-RPC client.

Responses come back as a tagged variant (RpcOk | RpcFailure) so callers
branch on the remote outcome explicitly. Transport problems raise
RpcTransportError, flagged with whether the request may have reached the
server.
"""
from __future__ import annotations

import itertools
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, List, Optional, Union

import httpx
from pydantic import ValidationError

from .config import EndpointConfig
from .schemas import RpcEnvelope

logger = logging.getLogger(__name__)

# Statuses a gateway returns without forwarding the request upstream
_NOT_FORWARDED_STATUSES = frozenset({429, 502, 503})

# httpx failures raised before any request bytes leave the process
_NOT_SENT_ERRORS = (
    httpx.ConnectError,
    httpx.ConnectTimeout,
    httpx.PoolTimeout,
    httpx.LocalProtocolError,
    httpx.UnsupportedProtocol,
    httpx.ProxyError,
)


@dataclass(frozen=True)
class RpcOk:
    """Successful JSON-RPC response."""
    result: Any


@dataclass(frozen=True)
class RpcFailure:
    """JSON-RPC error object returned by the server."""
    code: int
    message: str
    data: Any = None

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


RpcResponse = Union[RpcOk, RpcFailure]


class RpcTransportError(Exception):
    """
    The call produced no usable JSON-RPC response.

    ``request_sent`` is False only when the request provably never reached
    the server; anything else must be treated as possibly delivered.
    """

    def __init__(self, message: str, *, request_sent: bool, status_code: Optional[int] = None):
        self.request_sent = request_sent
        self.status_code = status_code
        super().__init__(message)


class JsonRpcClient:
    """
    JSON-RPC 2.0 client over a (possibly shared) httpx.AsyncClient.

    The client holds no per-call state beyond a request id counter, so one
    instance may serve concurrent relay runs.
    """

    def __init__(
        self,
        endpoint: EndpointConfig,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        if not endpoint.url:
            raise ValueError("JSON-RPC endpoint URL is not configured")
        self._endpoint = endpoint
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=endpoint.timeout_seconds)
        self._ids = itertools.count(1)

    @property
    def endpoint(self) -> EndpointConfig:
        return self._endpoint

    async def call(self, method: str, params: Optional[List[Any]] = None) -> RpcResponse:
        """
        Make a JSON-RPC call.

        Args:
            method: RPC method name
            params: Method parameters

        Returns:
            RpcOk with the result, or RpcFailure with the server's error object

        Raises:
            RpcTransportError: If no valid JSON-RPC response was received
        """
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params or [],
        }
        url = self._endpoint.masked_url()
        start_time = time.monotonic()

        try:
            response = await self._client.post(
                self._endpoint.url,
                json=payload,
                headers={"Content-Type": "application/json", **self._endpoint.headers},
                timeout=self._endpoint.timeout_seconds,
            )
        except _NOT_SENT_ERRORS as exc:
            logger.warning(f"RPC {method} to {url} not delivered: {exc!r}")
            raise RpcTransportError(
                f"{method}: request not delivered ({type(exc).__name__})",
                request_sent=False,
            ) from exc
        except httpx.TransportError as exc:
            logger.warning(f"RPC {method} to {url} lost after sending: {exc!r}")
            raise RpcTransportError(
                f"{method}: connection failed after sending ({type(exc).__name__})",
                request_sent=True,
            ) from exc
        except httpx.RequestError as exc:
            logger.warning(f"RPC {method} to {url} failed: {exc!r}")
            raise RpcTransportError(
                f"{method}: request failed ({type(exc).__name__})",
                request_sent=True,
            ) from exc

        latency_ms = (time.monotonic() - start_time) * 1000
        envelope = self._parse_envelope(method, response)

        if envelope is None:
            request_sent = response.status_code not in _NOT_FORWARDED_STATUSES
            logger.warning(
                f"RPC {method} to {url} returned HTTP {response.status_code} without a JSON-RPC body"
            )
            raise RpcTransportError(
                f"{method}: unusable response (HTTP {response.status_code})",
                request_sent=request_sent,
                status_code=response.status_code,
            )

        if envelope.error is not None:
            logger.debug(
                f"RPC {method} to {url} returned error {envelope.error.code} in {latency_ms:.0f}ms"
            )
            return RpcFailure(
                code=envelope.error.code,
                message=envelope.error.message,
                data=envelope.error.data,
            )

        logger.debug(f"RPC {method} to {url} succeeded in {latency_ms:.0f}ms")
        return RpcOk(result=envelope.result)

    @staticmethod
    def _parse_envelope(method: str, response: httpx.Response) -> Optional[RpcEnvelope]:
        """Validate the body as a JSON-RPC envelope; None when it is not one."""
        try:
            body = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return None
        if not isinstance(body, dict):
            return None
        try:
            return RpcEnvelope.model_validate(body)
        except ValidationError as exc:
            logger.debug(f"RPC {method} response failed validation: {exc}")
            return None

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "JsonRpcClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
