"""
Configuration management for boc-relay.

Provides centralized configuration for:
- JSON-RPC endpoints (execution node, sponsor, bundler)
- Chain and entry point selection
- Operation fee/gas policy
- Receipt polling budget
- Transient retry settings
- Logging configuration
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

GWEI = 10**9

ENTRYPOINT_V07 = "0x0000000071727De22E5E9d8BAf0edAc6f37da032"

EXECUTE_FORMATS = ("simple", "safe", "raw")


@dataclass
class EndpointConfig:
    """Configuration for a single JSON-RPC endpoint."""
    url: str
    timeout_seconds: float = 10.0
    headers: Dict[str, str] = field(default_factory=dict)

    def masked_url(self) -> str:
        """Mask query parameters (API keys) for logging."""
        if "?" in self.url:
            base = self.url.split("?")[0]
            return f"{base}?<params_masked>"
        return self.url


@dataclass
class ChainConfig:
    """Configuration for the execution network."""
    chain_id: int
    name: str
    display_name: str
    default_rpc: str
    entry_point: str = ENTRYPOINT_V07
    native_token: str = "CELO"
    explorer_url: str = ""
    is_testnet: bool = False


@dataclass
class OperationPolicy:
    """
    Static fee ceilings and gas constants applied when building operations.

    The fee values are ceilings the sponsor agrees to pay up to, not live
    network prices. Verification and pre-verification gas are enforced by
    the bundler at submission time, so the builder never goes below the
    floors.
    """
    max_fee_per_gas: int = 1 * GWEI
    max_priority_fee_per_gas: int = 1 * GWEI
    verification_gas_limit: int = 150_000
    verification_gas_floor: int = 100_000
    pre_verification_gas: int = 50_000
    pre_verification_gas_floor: int = 21_000
    call_gas_buffer_percent: int = 20
    execute_format: str = "simple"

    def __post_init__(self) -> None:
        if self.max_fee_per_gas <= 0:
            raise ValueError("max_fee_per_gas must be positive")
        if self.max_priority_fee_per_gas < 0:
            raise ValueError("max_priority_fee_per_gas must not be negative")
        if self.max_priority_fee_per_gas > self.max_fee_per_gas:
            raise ValueError("max_priority_fee_per_gas cannot exceed max_fee_per_gas")
        if self.verification_gas_floor < 0 or self.pre_verification_gas_floor < 0:
            raise ValueError("gas floors must not be negative")
        if self.call_gas_buffer_percent < 0:
            raise ValueError("call_gas_buffer_percent must not be negative")
        if self.execute_format not in EXECUTE_FORMATS:
            raise ValueError(
                f"execute_format must be one of {EXECUTE_FORMATS}, got {self.execute_format!r}"
            )


@dataclass
class PollingConfig:
    """Configuration for receipt polling."""
    max_attempts: int = 30
    interval_seconds: float = 1.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.interval_seconds < 0:
            raise ValueError("interval_seconds must not be negative")

    @property
    def budget_seconds(self) -> float:
        """Upper bound of time spent waiting between lookups."""
        return self.max_attempts * self.interval_seconds


@dataclass
class RetryConfig:
    """Retry settings for transient stage failures."""
    transient_retries: int = 1
    retry_delay_seconds: float = 0.5

    @property
    def max_attempts(self) -> int:
        return 1 + max(0, self.transient_retries)


@dataclass
class LoggingConfig:
    """Configuration for relay logging."""
    stage_level: str = "DEBUG"
    settlement_level: str = "INFO"
    error_level: str = "WARNING"
    mask_addresses: bool = False


@dataclass
class RelayConfig:
    """
    Master configuration for boc-relay.

    Supports loading from environment variables with prefix BOC_RELAY_.
    """
    chain: ChainConfig
    execution: EndpointConfig
    sponsor: EndpointConfig
    bundler: EndpointConfig

    policy: OperationPolicy = field(default_factory=OperationPolicy)
    polling: PollingConfig = field(default_factory=PollingConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    sponsorship_policy_id: Optional[str] = None
    direct_min_balance_wei: int = 10**15  # 0.001 CELO

    @property
    def entry_point(self) -> str:
        return self.chain.entry_point

    def to_dict(self) -> Dict[str, Any]:
        """Summary safe for display (URLs masked)."""
        return {
            "chain": self.chain.name,
            "chain_id": self.chain.chain_id,
            "entry_point": self.entry_point,
            "execution_rpc": self.execution.masked_url(),
            "sponsor_rpc": self.sponsor.masked_url(),
            "bundler_rpc": self.bundler.masked_url(),
            "sponsorship_policy_id": self.sponsorship_policy_id,
            "max_fee_per_gas": self.policy.max_fee_per_gas,
            "max_priority_fee_per_gas": self.policy.max_priority_fee_per_gas,
            "verification_gas_limit": self.policy.verification_gas_limit,
            "pre_verification_gas": self.policy.pre_verification_gas,
            "execute_format": self.policy.execute_format,
            "poll_attempts": self.polling.max_attempts,
            "poll_interval_seconds": self.polling.interval_seconds,
            "transient_retries": self.retry.transient_retries,
            "direct_min_balance_wei": self.direct_min_balance_wei,
        }


CHAINS: Dict[str, ChainConfig] = {
    "celo": ChainConfig(
        chain_id=42220,
        name="celo",
        display_name="Celo",
        default_rpc="https://forno.celo.org",
        native_token="CELO",
        explorer_url="https://celoscan.io",
    ),
    "celo_alfajores": ChainConfig(
        chain_id=44787,
        name="celo_alfajores",
        display_name="Celo Alfajores",
        default_rpc="https://alfajores-forno.celo-testnet.org",
        native_token="CELO",
        explorer_url="https://alfajores.celoscan.io",
        is_testnet=True,
    ),
}


def _get_env(key: str, default: Any = None, prefix: str = "BOC_RELAY_") -> Any:
    """Get environment variable with prefix."""
    return os.getenv(f"{prefix}{key}", default)


def _get_env_int(key: str, default: int) -> int:
    value = _get_env(key)
    if value is None or value == "":
        return default
    try:
        return int(value, 0)
    except ValueError as exc:
        raise ValueError(f"BOC_RELAY_{key} must be an integer, got {value!r}") from exc


def _get_env_float(key: str, default: float) -> float:
    value = _get_env(key)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise ValueError(f"BOC_RELAY_{key} must be a number, got {value!r}") from exc


def get_chain(name: str) -> ChainConfig:
    """Look up a supported chain by name."""
    if name not in CHAINS:
        raise ValueError(f"Unknown chain: {name}. Supported: {supported_chains()}")
    return CHAINS[name]


def supported_chains() -> List[str]:
    return sorted(CHAINS)


def build_default_config() -> RelayConfig:
    """Build configuration from defaults with environment overrides."""
    base_chain = get_chain(_get_env("CHAIN", "celo"))
    entry_point = _get_env("ENTRY_POINT") or base_chain.entry_point
    chain = ChainConfig(
        chain_id=base_chain.chain_id,
        name=base_chain.name,
        display_name=base_chain.display_name,
        default_rpc=base_chain.default_rpc,
        entry_point=entry_point,
        native_token=base_chain.native_token,
        explorer_url=base_chain.explorer_url,
        is_testnet=base_chain.is_testnet,
    )

    rpc_timeout = _get_env_float("RPC_TIMEOUT_SECONDS", 10.0)
    execution_url = _get_env("EXECUTION_RPC_URL") or chain.default_rpc
    sponsor_url = _get_env("SPONSOR_URL", "")
    # One provider usually serves both the paymaster and bundler namespaces
    bundler_url = _get_env("BUNDLER_URL") or sponsor_url

    if not sponsor_url:
        logger.warning("BOC_RELAY_SPONSOR_URL is not set; sponsorship calls will fail")

    policy = OperationPolicy(
        max_fee_per_gas=_get_env_int("MAX_FEE_PER_GAS", 1 * GWEI),
        max_priority_fee_per_gas=_get_env_int("MAX_PRIORITY_FEE_PER_GAS", 1 * GWEI),
        verification_gas_limit=_get_env_int("VERIFICATION_GAS_LIMIT", 150_000),
        pre_verification_gas=_get_env_int("PRE_VERIFICATION_GAS", 50_000),
        execute_format=_get_env("EXECUTE_FORMAT", "simple"),
    )
    polling = PollingConfig(
        max_attempts=_get_env_int("POLL_ATTEMPTS", 30),
        interval_seconds=_get_env_float("POLL_INTERVAL_SECONDS", 1.0),
    )
    retry = RetryConfig(
        transient_retries=_get_env_int("TRANSIENT_RETRIES", 1),
        retry_delay_seconds=_get_env_float("RETRY_DELAY_SECONDS", 0.5),
    )
    logging_config = LoggingConfig(
        mask_addresses=str(_get_env("MASK_ADDRESSES", "false")).lower() in ("1", "true", "yes"),
    )

    return RelayConfig(
        chain=chain,
        execution=EndpointConfig(url=execution_url, timeout_seconds=rpc_timeout),
        sponsor=EndpointConfig(url=sponsor_url, timeout_seconds=rpc_timeout),
        bundler=EndpointConfig(url=bundler_url, timeout_seconds=rpc_timeout),
        policy=policy,
        polling=polling,
        retry=retry,
        logging=logging_config,
        sponsorship_policy_id=_get_env("SPONSORSHIP_POLICY_ID") or None,
        direct_min_balance_wei=_get_env_int("DIRECT_MIN_BALANCE_WEI", 10**15),
    )


# Global configuration instance
_global_config: Optional[RelayConfig] = None


def get_config() -> RelayConfig:
    """Get the global configuration instance."""
    global _global_config
    if _global_config is None:
        _global_config = build_default_config()
    return _global_config


def set_config(config: Optional[RelayConfig]) -> None:
    """Set (or reset with None) the global configuration instance."""
    global _global_config
    _global_config = config
