"""Small predicates and accessors over kubernetes_asyncio API models."""

from __future__ import annotations

from typing import Any

from kubernetes_asyncio.client import V1Endpoints, V1Ingress, V1Service


def endpoints_have_subsets(ep: V1Endpoints | None) -> bool:
    """Return True if at least one subset of ``ep`` lists a ready address."""
    if ep is None:
        return False
    for subset in ep.subsets or []:
        if subset.addresses:
            return True
    return False


def get_service_port(svc: V1Service | None, port: int | str | None) -> tuple[int, bool]:
    """Resolve a backend port reference against the ports a Service declares.

    A numeric reference must equal a declared port number; a string
    reference must equal a declared port name.

    Returns:
        ``(port, True)`` on a match, ``(0, False)`` otherwise.
    """
    if svc is None or svc.spec is None or port is None:
        return 0, False
    for service_port in svc.spec.ports or []:
        if isinstance(port, int):
            if service_port.port == port:
                return service_port.port, True
        elif service_port.name == port:
            return service_port.port, True
    return 0, False


def backend_port_ref(backend: Any) -> int | str | None:
    """Return the port reference of an ingress path backend.

    ``V1ServiceBackendPort`` carries either ``number`` or ``name``; the
    number wins when both are set.
    """
    service = getattr(backend, "service", None)
    if service is None or service.port is None:
        return None
    if service.port.number is not None:
        return int(service.port.number)
    if service.port.name:
        return str(service.port.name)
    return None


def backend_service_name(backend: Any) -> str:
    """Return the backend service name of an ingress path, or ``""``."""
    service = getattr(backend, "service", None)
    if service is None:
        return ""
    return service.name or ""


def object_namespace(obj: Any) -> str:
    metadata = getattr(obj, "metadata", None)
    return (getattr(metadata, "namespace", None) or "") if metadata is not None else ""


def object_name(obj: Any) -> str:
    metadata = getattr(obj, "metadata", None)
    return (getattr(metadata, "name", None) or "") if metadata is not None else ""


def object_annotations(obj: Any) -> dict[str, str]:
    metadata = getattr(obj, "metadata", None)
    annotations = getattr(metadata, "annotations", None) if metadata is not None else None
    return annotations if isinstance(annotations, dict) else {}


def is_ingress(obj: Any) -> bool:
    return isinstance(obj, V1Ingress)
