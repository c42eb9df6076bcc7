"""Gasless relay of contract calls through an ERC-4337 paymaster and bundler."""

from .config import (
    ChainConfig,
    EndpointConfig,
    LoggingConfig,
    OperationPolicy,
    PollingConfig,
    RelayConfig,
    RetryConfig,
    build_default_config,
    get_config,
    set_config,
)
from .errors import (
    DeadlineExceeded,
    ErrorKind,
    EstimationUnavailable,
    IncompleteOperation,
    InvalidIntent,
    RelayError,
    SimulationReverted,
    SponsorshipDenied,
    SponsorshipUnavailable,
    SubmissionAmbiguous,
    SubmissionRejected,
    SubmissionUnavailable,
    TimedOut,
)
from .settlement import Failed, Included, Settlement
from .intent import CallIntent, IntentEncoder, default_encoder
from .estimator import ResourceEstimate, ResourceEstimator
from .coordinator import RelayCoordinator
from .direct import DirectCall, DirectCallPlanner, GaslessRouter

__all__ = [
    "ChainConfig",
    "EndpointConfig",
    "LoggingConfig",
    "OperationPolicy",
    "PollingConfig",
    "RelayConfig",
    "RetryConfig",
    "build_default_config",
    "get_config",
    "set_config",
    "DeadlineExceeded",
    "ErrorKind",
    "EstimationUnavailable",
    "IncompleteOperation",
    "InvalidIntent",
    "RelayError",
    "SimulationReverted",
    "SponsorshipDenied",
    "SponsorshipUnavailable",
    "SubmissionAmbiguous",
    "SubmissionRejected",
    "SubmissionUnavailable",
    "TimedOut",
    "Failed",
    "Included",
    "Settlement",
    "CallIntent",
    "IntentEncoder",
    "default_encoder",
    "ResourceEstimate",
    "ResourceEstimator",
    "RelayCoordinator",
    "DirectCall",
    "DirectCallPlanner",
    "GaslessRouter",
]
