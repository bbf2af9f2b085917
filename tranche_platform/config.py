"""
Tranche Platform Configuration
==============================

Centralized configuration management using environment variables with sensible
defaults. Follows the 12-factor app methodology for cloud-native deployments.

This module provides a singleton ``Settings`` instance that loads configuration
from environment variables prefixed with ``TRANCHE_``. Everything except the
signing keys has a default suitable for a local Hardhat node; the keys must
always be supplied by the environment (or a secret store that populates it).

Environment Variables
---------------------
TRANCHE_WEB3_RPC_URL : str
    JSON-RPC endpoint of the ledger node (default: "http://127.0.0.1:8545").
TRANCHE_WEB3_OPERATOR_PRIVATE_KEY : str
    Key of the operator identity that deploys contracts and services the pool.
TRANCHE_WEB3_INVESTOR_PRIVATE_KEY : str
    Key of the investor identity that subscribes to tranches.
TRANCHE_ARTIFACTS_DIR : str
    Directory holding the compiled Hardhat artifacts.
TRANCHE_LOG_LEVEL : str
    Logging level (DEBUG, INFO, WARNING, ERROR).

Example
-------
Using environment variables::

    export TRANCHE_WEB3_OPERATOR_PRIVATE_KEY=0x...
    export TRANCHE_WEB3_INVESTOR_PRIVATE_KEY=0x...
    python -m uvicorn tranche_platform.api_main:app

Accessing settings in code::

    from tranche_platform.config import settings
    print(f"Ledger endpoint: {settings.web3_rpc_url}")
"""

from __future__ import annotations

import json
import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, List, Tuple

# Determine the package root directory
_PACKAGE_ROOT = Path(__file__).resolve().parent


def _get_env(key: str, default: Any, value_type: type = str) -> Any:
    """
    Get an environment variable with type conversion.

    Parameters
    ----------
    key : str
        Environment variable name (will be prefixed with TRANCHE_).
    default : Any
        Default value if not set.
    value_type : type
        Type to convert to (str, int, float, bool, list).

    Returns
    -------
    Any
        The environment variable value converted to the specified type.
    """
    env_name = f"TRANCHE_{key.upper()}"
    env_value = os.environ.get(env_name)

    if env_value is None:
        return default

    try:
        if value_type == bool:
            return env_value.lower() in ("true", "1", "yes", "on")
        elif value_type == int:
            return int(env_value)
        elif value_type == float:
            return float(env_value)
        elif value_type == list:
            try:
                return json.loads(env_value)
            except json.JSONDecodeError:
                return env_value.split(",")
        else:
            return env_value
    except (ValueError, TypeError):
        return default


class Settings:
    """
    Application configuration loaded from environment variables.

    All settings have sensible defaults for local development. In production,
    override via environment variables prefixed with ``TRANCHE_``.

    Example
    -------
    >>> from tranche_platform.config import settings
    >>> print(f"Subscription band: {settings.subscription_band}")
    """

    def __init__(self) -> None:
        """Initialize settings from environment variables."""
        # =====================================================================
        # API Server Configuration
        # =====================================================================
        self.api_host: str = _get_env("API_HOST", "127.0.0.1", str)
        self.api_port: int = _get_env("API_PORT", 8000, int)
        self.api_reload: bool = _get_env("API_RELOAD", False, bool)

        # =====================================================================
        # Logging Configuration
        # =====================================================================
        self.log_level: str = _get_env("LOG_LEVEL", "INFO", str)
        self.log_format: str = _get_env("LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(message)s", str)

        # =====================================================================
        # Web3 Ledger
        # =====================================================================
        self.web3_rpc_url: str = _get_env("WEB3_RPC_URL", "http://127.0.0.1:8545", str)
        self.web3_operator_private_key: str = _get_env("WEB3_OPERATOR_PRIVATE_KEY", "", str)
        self.web3_investor_private_key: str = _get_env("WEB3_INVESTOR_PRIVATE_KEY", "", str)
        self.web3_default_gas: int = _get_env("WEB3_DEFAULT_GAS", 1_000_000, int)
        self.web3_deploy_gas: int = _get_env("WEB3_DEPLOY_GAS", 8_000_000, int)
        self.web3_receipt_timeout_seconds: float = _get_env("WEB3_RECEIPT_TIMEOUT_SECONDS", 120.0, float)
        self.web3_poa: bool = _get_env("WEB3_POA", False, bool)
        self.artifacts_dir: str = _get_env("ARTIFACTS_DIR", str(_PACKAGE_ROOT.parent / "artifacts"), str)
        self.stablecoin_decimals: int = _get_env("STABLECOIN_DECIMALS", 18, int)

        # =====================================================================
        # Loan Generation
        # =====================================================================
        self.loan_count: int = _get_env("LOAN_COUNT", 20, int)
        self.loan_principal_min: int = _get_env("LOAN_PRINCIPAL_MIN", 100_000, int)
        self.loan_principal_max: int = _get_env("LOAN_PRINCIPAL_MAX", 1_000_000, int)
        self.loan_rate_bps_min: int = _get_env("LOAN_RATE_BPS_MIN", 100, int)
        self.loan_rate_bps_max: int = _get_env("LOAN_RATE_BPS_MAX", 1_000, int)
        self.loan_maturity_years_min: int = _get_env("LOAN_MATURITY_YEARS_MIN", 1, int)
        self.loan_maturity_years_max: int = _get_env("LOAN_MATURITY_YEARS_MAX", 5, int)
        self.loan_seed: int = _get_env("LOAN_SEED", -1, int)

        # =====================================================================
        # Tranche Structure & Subscriptions
        # =====================================================================
        self.tranche_partition_sizes: List[int] = _get_env("PARTITION_SIZES", [6, 6, 7], list)
        self.series_id: int = _get_env("SERIES_ID", 1, int)
        self.subscription_min: int = _get_env("SUBSCRIPTION_MIN", 10_000, int)
        self.subscription_max: int = _get_env("SUBSCRIPTION_MAX", 500_000, int)
        self.track_subscription_capacity: bool = _get_env("TRACK_SUBSCRIPTION_CAPACITY", True, bool)

    @property
    def package_root(self) -> Path:
        """Return the package root directory."""
        return _PACKAGE_ROOT

    @property
    def log_level_int(self) -> int:
        """Return the log level as an integer constant."""
        return getattr(logging, self.log_level.upper(), logging.INFO)

    @property
    def subscription_band(self) -> Tuple[int, int]:
        """Return the inclusive (min, max) band for a single subscription."""
        return self.subscription_min, self.subscription_max

    @property
    def partition_sizes(self) -> Tuple[int, ...]:
        """Return tranche bucket sizes as integers, Senior first."""
        return tuple(int(size) for size in self.tranche_partition_sizes)

    def configure_logging(self) -> None:
        """
        Configure application logging based on settings.

        Sets up the root logger with the configured level and format.
        """
        logging.basicConfig(
            level=self.log_level_int,
            format=self.log_format,
        )
        # Quiet noisy loggers
        logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
        logging.getLogger("urllib3").setLevel(logging.WARNING)
        logging.getLogger("web3").setLevel(logging.WARNING)


@lru_cache()
def get_settings() -> Settings:
    """
    Return the cached application settings instance.

    This function uses LRU caching to ensure settings are loaded only once
    and reused throughout the application lifetime.

    Returns
    -------
    Settings
        Application settings instance.

    Example
    -------
    >>> settings = get_settings()
    >>> print(settings.web3_rpc_url)
    http://127.0.0.1:8545
    """
    return Settings()


# Module-level singleton for convenience
settings = get_settings()
