"""Payment processor configuration helpers."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional
import os

DEFAULT_STRIPE_API_VERSION = "2022-11-15"
SUPPORTED_PROVIDERS = {"stripe", "sandbox"}


@dataclass(frozen=True)
class GatewayConfig:
    """Configuration for the payment processor gateway."""

    provider_name: str
    secret_key: Optional[str]
    api_version: str
    max_network_retries: int
    retire_concurrency: int
    default_currency: str

    def __repr__(self) -> str:
        secret = "***" if self.secret_key else None
        return (
            f"GatewayConfig(provider_name={self.provider_name!r}, secret_key={secret!r}, "
            f"api_version={self.api_version!r}, max_network_retries={self.max_network_retries}, "
            f"retire_concurrency={self.retire_concurrency}, default_currency={self.default_currency!r})"
        )


def _to_int(value: Optional[str], *, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected integer value, got {value!r}") from exc


def load_gateway_config(env: Optional[Mapping[str, str]] = None) -> GatewayConfig:
    """Load :class:`GatewayConfig` from environment variables."""

    env_mapping = os.environ if env is None else env

    provider_name = (env_mapping.get("BILLING_PROVIDER") or "sandbox").strip().lower() or "sandbox"
    if provider_name not in SUPPORTED_PROVIDERS:
        raise ValueError(f"Unsupported BILLING_PROVIDER {provider_name!r}")

    secret_key = (env_mapping.get("STRIPE_SECRET_KEY") or "").strip() or None
    if provider_name == "stripe" and not secret_key:
        raise ValueError("STRIPE_SECRET_KEY not configured")

    api_version = (env_mapping.get("STRIPE_API_VERSION") or DEFAULT_STRIPE_API_VERSION).strip()
    max_network_retries = max(0, _to_int(env_mapping.get("STRIPE_MAX_NETWORK_RETRIES"), default=0))
    retire_concurrency = max(1, _to_int(env_mapping.get("BILLING_RETIRE_CONCURRENCY"), default=8))
    default_currency = (env_mapping.get("BILLING_DEFAULT_CURRENCY") or "usd").strip().lower()

    return GatewayConfig(
        provider_name=provider_name,
        secret_key=secret_key,
        api_version=api_version,
        max_network_retries=max_network_retries,
        retire_concurrency=retire_concurrency,
        default_currency=default_currency,
    )


__all__ = ["DEFAULT_STRIPE_API_VERSION", "GatewayConfig", "load_gateway_config"]
