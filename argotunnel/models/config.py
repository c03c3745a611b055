"""Configuration dataclasses populated by :func:`argotunnel.config.load_config`."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class LogConfig:
    level: str = "info"
    format: str = "json"


@dataclass
class ApiConfig:
    port: int = 8080
    enabled: bool = True


@dataclass
class ControllerConfig:
    """Ingress selection and cache behaviour.

    Attributes:
        ingress_class:              Class an Ingress must claim to be tunneled.
        default_secret:             ``namespace/name`` of the origin-certificate
                                    Secret used for hosts without a TLS entry;
                                    empty disables the fallback.
        secret_cert_key:            Secret data key holding the certificate.
        resync_period_seconds:      Periodic full re-delivery; 0 disables it.
        cache_sync_timeout_seconds: Startup budget for the initial lists.
    """

    ingress_class: str = "argo-tunnel"
    default_secret: str = ""
    secret_cert_key: str = "cert.pem"
    resync_period_seconds: int = 0
    cache_sync_timeout_seconds: int = 60


@dataclass
class EngineConfig:
    binary: str = "cloudflared"
    repair_delay_ms: int = 20


@dataclass
class ArgoTunnelConfig:
    """Top-level configuration."""

    log: LogConfig = field(default_factory=LogConfig)
    api: ApiConfig = field(default_factory=ApiConfig)
    controller: ControllerConfig = field(default_factory=ControllerConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)
