"""Configuration data structures."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class ClusterSourceConfig:
    """Where cluster kubeconfigs are discovered at startup."""

    kubeconfig_dir: str = "/kubeconfigs"
    default_kubeconfig: str = ""  # empty -> ~/.kube/config
    in_cluster: bool = False


@dataclass
class CacheConfig:
    """Report cache TTLs and disk snapshot settings."""

    path: str = "trivy-cache.json"
    snapshot_interval_seconds: int = 120
    report_ttl_seconds: int = 300
    namespace_ttl_seconds: int = 600


@dataclass
class DiscoveryConfig:
    """CRD registry refresh settings."""

    refresh_ttl_seconds: int = 300


@dataclass
class ReaderConfig:
    """Report read-path settings."""

    request_timeout_seconds: float = 30.0
    page_limit: int = 100
    warmup_kind: str = "vulnerabilityreports"


@dataclass
class WatchConfig:
    """Report watch stream settings."""

    enabled: bool = True
    timeout_seconds: int = 300


@dataclass
class APIConfig:
    """REST API configuration."""

    host: str = "0.0.0.0"
    port: int = 8080


@dataclass
class LogConfig:
    """Logging configuration."""

    level: str = "info"
    format: str = "json"


@dataclass
class TrivyUIConfig:
    """Top-level trivy-ui configuration."""

    clusters: ClusterSourceConfig = field(default_factory=ClusterSourceConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    discovery: DiscoveryConfig = field(default_factory=DiscoveryConfig)
    reader: ReaderConfig = field(default_factory=ReaderConfig)
    watch: WatchConfig = field(default_factory=WatchConfig)
    api: APIConfig = field(default_factory=APIConfig)
    log: LogConfig = field(default_factory=LogConfig)
