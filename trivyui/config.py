"""Configuration loading from environment variables."""

from __future__ import annotations

import os

from trivyui.models.config import (
    APIConfig,
    CacheConfig,
    ClusterSourceConfig,
    DiscoveryConfig,
    LogConfig,
    ReaderConfig,
    TrivyUIConfig,
    WatchConfig,
)

# Unprefixed spellings accepted by earlier releases and existing Helm charts.
_KUBECONFIG_DIR_ALIASES = ("KUBECONFIG_DIR", "KUBECONFIGDIR", "KUBE_CONFIG_DIR")


def _env(key: str, default: str = "") -> str:
    return os.environ.get(f"TRIVYUI_{key}", default)


def _env_bool(key: str, default: bool = False) -> bool:
    val = _env(key, str(default).lower())
    return val.lower() in ("true", "1", "yes")


def _env_int(key: str, default: int, min_val: int | None = None, max_val: int | None = None) -> int:
    val = int(_env(key, str(default)))
    if min_val is not None:
        val = max(val, min_val)
    if max_val is not None:
        val = min(val, max_val)
    return val


def _env_float(key: str, default: float, min_val: float | None = None) -> float:
    val = float(_env(key, str(default)))
    if min_val is not None:
        val = max(val, min_val)
    return val


def _validate_log_level(value: str) -> str:
    valid = {"debug", "info", "warning", "error"}
    if value.lower() not in valid:
        raise ValueError(f"Invalid log level: {value}. Must be one of {valid}")
    return value.lower()


def _validate_log_format(value: str) -> str:
    valid = {"json", "console"}
    if value.lower() not in valid:
        raise ValueError(f"Invalid log format: {value}. Must be one of {valid}")
    return value.lower()


def _kubeconfig_dir() -> str:
    explicit = _env("KUBECONFIG_DIR")
    if explicit:
        return explicit
    for alias in _KUBECONFIG_DIR_ALIASES:
        value = os.environ.get(alias, "")
        if value:
            return value
    return "/kubeconfigs"


def load_config() -> TrivyUIConfig:
    """Load configuration from TRIVYUI_* environment variables.

    ``KUBECONFIG`` and ``KUBERNETES_SERVICE_HOST`` keep their standard
    Kubernetes meaning and are read unprefixed.
    """
    return TrivyUIConfig(
        clusters=ClusterSourceConfig(
            kubeconfig_dir=_kubeconfig_dir(),
            default_kubeconfig=os.environ.get("KUBECONFIG", ""),
            in_cluster=bool(os.environ.get("KUBERNETES_SERVICE_HOST", "")),
        ),
        cache=CacheConfig(
            path=_env("CACHE_PATH", "trivy-cache.json"),
            snapshot_interval_seconds=_env_int("CACHE_INTERVAL", 120, min_val=10, max_val=3600),
            report_ttl_seconds=_env_int("REPORT_CACHE_TTL", 300, min_val=10, max_val=86400),
            namespace_ttl_seconds=_env_int("NAMESPACE_CACHE_TTL", 600, min_val=10, max_val=86400),
        ),
        discovery=DiscoveryConfig(
            refresh_ttl_seconds=_env_int("CRD_REFRESH_TTL", 300, min_val=30, max_val=86400),
        ),
        reader=ReaderConfig(
            request_timeout_seconds=_env_float("REQUEST_TIMEOUT", 30.0, min_val=1.0),
            page_limit=_env_int("PAGE_LIMIT", 100, min_val=1, max_val=1000),
            warmup_kind=_env("WARMUP_KIND", "vulnerabilityreports"),
        ),
        watch=WatchConfig(
            enabled=_env_bool("WATCH_ENABLED", True),
            timeout_seconds=_env_int("WATCH_TIMEOUT", 300, min_val=30, max_val=3600),
        ),
        api=APIConfig(
            host=_env("API_HOST", "0.0.0.0"),
            port=_env_int("API_PORT", 8080, min_val=1024, max_val=65535),
        ),
        log=LogConfig(
            level=_validate_log_level(_env("LOG_LEVEL", "info")),
            format=_validate_log_format(_env("LOG_FORMAT", "json")),
        ),
    )
