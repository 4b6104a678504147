"""SDK configuration model and network defaults."""

import os
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError
from pydantic import field_validator, model_validator

from common.constants import (
    DEFAULT_CACHE_MAX_ENTRIES,
    DEFAULT_CACHE_TTL_SECONDS,
    DEFAULT_GAS_BUDGET,
    DEFAULT_NETWORK,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    DEFAULT_SEAL_THRESHOLD,
    DEFAULT_STORAGE_EPOCHS,
    INDEXING_GRACE_SECONDS,
    NETWORKS,
    PACKAGE_IDS,
    SUI_RPC_URLS,
    WALRUS_URLS,
)
from walbucket.exceptions import ConfigurationError

# Environment overrides for network-dependent defaults. Explicit values win.
ENV_OVERRIDES = {
    'network': 'WALBUCKET_NETWORK',
    'package_id': 'WALBUCKET_PACKAGE_ID',
    'sui_rpc_url': 'WALBUCKET_SUI_RPC_URL',
    'walrus_publisher_url': 'WALBUCKET_PUBLISHER_URL',
    'walrus_aggregator_url': 'WALBUCKET_AGGREGATOR_URL',
}

SignAndExecute = Callable[..., Awaitable[Any]]


class GasStrategy(str, Enum):
    """Who signs and pays for ledger mutations."""
    SPONSORED = 'sponsored'
    SELF_PAY = 'self-pay'

    @classmethod
    def _missing_(cls, value):
        aliases = {
            'developer-sponsored': cls.SPONSORED,
            'user-pays': cls.SELF_PAY,
            'self_pay': cls.SELF_PAY,
        }
        if isinstance(value, str):
            return aliases.get(value.lower())
        return None


class WalbucketConfig(BaseModel):
    """
    Configuration for a Walbucket instance.

    Network-dependent fields left unset are filled from the network tables
    (or the WALBUCKET_* environment variables) after validation.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, extra='forbid')

    api_key: str
    network: str = DEFAULT_NETWORK
    encryption: bool = True
    gas_strategy: GasStrategy = GasStrategy.SPONSORED

    sponsor_private_key: Optional[str] = Field(default=None, repr=False)
    sign_and_execute: Optional[SignAndExecute] = Field(default=None, repr=False)
    user_address: Optional[str] = None

    package_id: Optional[str] = None
    sui_rpc_url: Optional[str] = None
    walrus_publisher_url: Optional[str] = None
    walrus_aggregator_url: Optional[str] = None

    seal_server_ids: List[str] = Field(default_factory=list)
    seal_threshold: int = Field(default=DEFAULT_SEAL_THRESHOLD, ge=1)

    cache_ttl: float = Field(default=DEFAULT_CACHE_TTL_SECONDS, gt=0)
    cache_max_entries: int = Field(default=DEFAULT_CACHE_MAX_ENTRIES, gt=0)
    credential_salt: str = Field(default='', repr=False)

    storage_epochs: int = Field(default=DEFAULT_STORAGE_EPOCHS, ge=1)
    gas_budget: int = Field(default=DEFAULT_GAS_BUDGET, gt=0)
    indexing_grace_seconds: float = Field(default=INDEXING_GRACE_SECONDS, ge=0)
    request_timeout: float = Field(default=DEFAULT_REQUEST_TIMEOUT_SECONDS, gt=0)
    query_max_retries: int = Field(default=0, ge=0)
    retry_backoff_multiplier: float = Field(default=2, ge=1)

    @model_validator(mode='before')
    @classmethod
    def _apply_env_overrides(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        for field_name, env_name in ENV_OVERRIDES.items():
            if data.get(field_name) is None and os.environ.get(env_name):
                data[field_name] = os.environ[env_name]
        return data

    @field_validator('api_key')
    @classmethod
    def _api_key_not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError('api_key is required')
        return value.strip()

    @field_validator('gas_strategy', mode='before')
    @classmethod
    def _normalize_gas_strategy(cls, value: Any) -> Any:
        if isinstance(value, str) and not isinstance(value, GasStrategy):
            try:
                return GasStrategy(value.lower())
            except ValueError:
                raise ValueError("gas_strategy must be 'sponsored' or 'self-pay'")
        return value

    @field_validator('network')
    @classmethod
    def _known_network(cls, value: str) -> str:
        value = value.lower()
        if value not in NETWORKS:
            raise ValueError(f"network must be one of {', '.join(NETWORKS)}")
        return value

    @model_validator(mode='after')
    def _fill_network_defaults(self) -> 'WalbucketConfig':
        if not self.package_id:
            self.package_id = PACKAGE_IDS[self.network] or None
        if not self.package_id:
            raise ConfigurationError(
                f"No package deployed on {self.network}; pass package_id explicitly"
            )

        self.sui_rpc_url = (self.sui_rpc_url or SUI_RPC_URLS[self.network]).rstrip('/')
        walrus = WALRUS_URLS[self.network]
        self.walrus_publisher_url = (self.walrus_publisher_url or walrus['publisher']).rstrip('/')
        self.walrus_aggregator_url = (self.walrus_aggregator_url or walrus['aggregator']).rstrip('/')
        return self

    def get_retry_config(self) -> dict:
        """
        Get retry configuration for read-only ledger queries.

        Returns:
            Dictionary with max_retries and retry_backoff_multiplier
        """
        return {
            'max_retries': self.query_max_retries,
            'retry_backoff_multiplier': self.retry_backoff_multiplier,
        }


def load_config(config: Optional[WalbucketConfig] = None, **kwargs) -> WalbucketConfig:
    """
    Build a validated configuration.

    Args:
        config: Already-built configuration, returned unchanged
        **kwargs: Fields for a new WalbucketConfig

    Returns:
        Validated configuration

    Raises:
        ConfigurationError: If any field is missing or invalid
    """
    if config is not None:
        if kwargs:
            raise ConfigurationError('Pass either a config object or keyword fields, not both')
        return config
    try:
        return WalbucketConfig(**kwargs)
    except PydanticValidationError as e:
        problems = '; '.join(
            f"{'.'.join(str(p) for p in err['loc']) or 'config'}: {err['msg']}" for err in e.errors()
        )
        raise ConfigurationError(f"Invalid configuration: {problems}", cause=e) from e
