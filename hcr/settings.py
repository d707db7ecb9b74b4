from __future__ import annotations

import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    # Core
    db_path: str = os.getenv("HCR_DB_PATH", "hcr.db")
    label_selector: str = os.getenv("HCR_LABEL_SELECTOR", "consul.hashicorp.com/connect-inject-status")
    # Empty means all namespaces.
    namespace: str = os.getenv("HCR_NAMESPACE", "")
    service_annotation: str = os.getenv("HCR_SERVICE_ANNOTATION", "consul.hashicorp.com/connect-service")

    # Consul agent
    consul_port: int = _env_int("HCR_CONSUL_PORT", 8500)
    consul_tls_port: int = _env_int("HCR_CONSUL_TLS_PORT", 8501)
    consul_use_tls: bool = _env_bool("HCR_CONSUL_USE_TLS", False)
    consul_token: str | None = os.getenv("HCR_CONSUL_TOKEN")
    consul_ca_file: str | None = os.getenv("HCR_CONSUL_CA_FILE")
    consul_tls_skip_verify: bool = _env_bool("HCR_CONSUL_TLS_SKIP_VERIFY", False)
    agent_timeout_s: float = _env_float("HCR_AGENT_TIMEOUT_S", 5.0)
    # Liveness is pushed by us, so the TTL never expires in practice.
    check_ttl: str = os.getenv("HCR_CHECK_TTL", "100000h")

    # Queue / retry
    max_retries: int = _env_int("HCR_MAX_RETRIES", 5)
    retry_base_delay_s: float = _env_float("HCR_RETRY_BASE_DELAY_S", 0.005)
    retry_max_delay_s: float = _env_float("HCR_RETRY_MAX_DELAY_S", 1000.0)
    service_wait_attempts: int = _env_int("HCR_SERVICE_WAIT_ATTEMPTS", 10)
    service_wait_interval_s: float = _env_float("HCR_SERVICE_WAIT_INTERVAL_S", 1.0)

    # Controller
    reconcile_interval_s: int = _env_int("HCR_RECONCILE_INTERVAL_S", 0)
    cache_sync_timeout_s: int = _env_int("HCR_CACHE_SYNC_TIMEOUT_S", 60)
    workers: int = _env_int("HCR_WORKERS", 1)
    deregister_on_delete: bool = _env_bool("HCR_DEREGISTER_ON_DELETE", False)
    enable_controller: bool = _env_bool("HCR_ENABLE_CONTROLLER", True)


settings = Settings()
