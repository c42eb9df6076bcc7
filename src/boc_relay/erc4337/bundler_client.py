"""ERC-4337 bundler (relay) client."""

from __future__ import annotations

import logging
from typing import Optional

from pydantic import ValidationError

from ..errors import SubmissionAmbiguous, SubmissionRejected, SubmissionUnavailable
from ..rpc import JsonRpcClient, RpcFailure, RpcTransportError
from ..schemas import UserOperationReceipt
from .user_operation import UserOperation

logger = logging.getLogger(__name__)


class ReceiptLookupError(Exception):
    """A receipt lookup produced no usable answer."""


class BundlerClient:
    """
    Submission and receipt lookup against a bundler endpoint.

    Submission is not idempotent: once the request may have reached the
    bundler, a lost response is reported as SubmissionAmbiguous and never
    retried here.
    """

    def __init__(self, rpc: JsonRpcClient):
        self._rpc = rpc

    async def send_user_operation(self, user_op: UserOperation, entry_point: str) -> str:
        """
        Submit a sponsored, signed operation.

        Returns:
            The bundler's user operation hash (tracking handle)

        Raises:
            SubmissionRejected: The bundler returned a JSON-RPC error
            SubmissionUnavailable: The request never reached the bundler
            SubmissionAmbiguous: The request may have been accepted
        """
        try:
            response = await self._rpc.call("eth_sendUserOperation", [user_op.to_rpc(), entry_point])
        except RpcTransportError as exc:
            if not exc.request_sent:
                raise SubmissionUnavailable(f"Bundler unreachable: {exc}") from exc
            raise SubmissionAmbiguous(
                f"Submission outcome unknown, reconcile nonce {user_op.nonce} for {user_op.sender}: {exc}"
            ) from exc

        if isinstance(response, RpcFailure):
            logger.info(f"Bundler rejected operation from {user_op.sender}: {response}")
            raise SubmissionRejected(response.message, code=response.code, data=response.data)

        handle = response.result
        if not isinstance(handle, str) or not handle.strip():
            raise SubmissionAmbiguous(
                f"Bundler accepted the request but returned no usable handle: {handle!r}"
            )
        return handle

    async def get_user_operation_receipt(self, user_op_hash: str) -> Optional[UserOperationReceipt]:
        """
        Look up the receipt for a submitted operation.

        Returns:
            The receipt, or None while the operation is not yet known/included

        Raises:
            ReceiptLookupError: Transport failure, error response or malformed payload
        """
        try:
            response = await self._rpc.call("eth_getUserOperationReceipt", [user_op_hash])
        except RpcTransportError as exc:
            raise ReceiptLookupError(str(exc)) from exc

        if isinstance(response, RpcFailure):
            raise ReceiptLookupError(f"eth_getUserOperationReceipt failed: {response}")

        if response.result is None:
            return None
        if not isinstance(response.result, dict):
            raise ReceiptLookupError("Bundler returned invalid receipt payload")
        try:
            return UserOperationReceipt.model_validate(response.result)
        except ValidationError as exc:
            raise ReceiptLookupError(f"Bundler returned invalid receipt payload: {exc}") from exc
