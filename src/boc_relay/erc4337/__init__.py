"""ERC-4337 pieces of the relay: envelope, builder, sponsor, bundler, receipts."""

from .user_operation import DUMMY_SIGNATURE, UserOperation
from .builder import OperationBuilder
from .paymaster_client import PaymasterClient
from .bundler_client import BundlerClient, ReceiptLookupError
from .receipts import PollAttempt, ReceiptPoller
from .signer import LocalAccountSigner, OperationSigner, user_operation_hash

__all__ = [
    "DUMMY_SIGNATURE",
    "UserOperation",
    "OperationBuilder",
    "PaymasterClient",
    "BundlerClient",
    "ReceiptLookupError",
    "PollAttempt",
    "ReceiptPoller",
    "LocalAccountSigner",
    "OperationSigner",
    "user_operation_hash",
]
