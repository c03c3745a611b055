"""argotunnel - Kubernetes Ingress controller for outbound edge tunnels."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("argotunnel")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"
