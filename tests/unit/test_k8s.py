"""Unit tests for argotunnel.k8s helpers."""

from __future__ import annotations

from kubernetes_asyncio.client import (
    V1EndpointAddress,
    V1Endpoints,
    V1EndpointSubset,
    V1IngressBackend,
    V1IngressServiceBackend,
    V1ObjectMeta,
    V1Service,
    V1ServiceBackendPort,
    V1ServicePort,
    V1ServiceSpec,
)

from argotunnel.k8s import (
    backend_port_ref,
    backend_service_name,
    endpoints_have_subsets,
    get_service_port,
    object_annotations,
)


def _make_service(*ports: tuple[str | None, int]) -> V1Service:
    return V1Service(
        metadata=V1ObjectMeta(name="svc-a", namespace="unit"),
        spec=V1ServiceSpec(ports=[V1ServicePort(name=name, port=port) for name, port in ports]),
    )


class TestEndpointsHaveSubsets:
    def test_none(self) -> None:
        assert endpoints_have_subsets(None) is False

    def test_no_subsets(self) -> None:
        assert endpoints_have_subsets(V1Endpoints(metadata=V1ObjectMeta(name="svc-a"))) is False

    def test_subset_without_addresses(self) -> None:
        ep = V1Endpoints(subsets=[V1EndpointSubset(addresses=[]), V1EndpointSubset(addresses=None)])
        assert endpoints_have_subsets(ep) is False

    def test_one_ready_address(self) -> None:
        ep = V1Endpoints(subsets=[V1EndpointSubset(), V1EndpointSubset(addresses=[V1EndpointAddress(ip="10.0.0.1")])])
        assert endpoints_have_subsets(ep) is True


class TestGetServicePort:
    def test_named_reference(self) -> None:
        assert get_service_port(_make_service(("http", 8080)), "http") == (8080, True)

    def test_numeric_reference(self) -> None:
        assert get_service_port(_make_service(("http", 8080), ("admin", 9090)), 9090) == (9090, True)

    def test_numeric_reference_does_not_match_name(self) -> None:
        assert get_service_port(_make_service(("8080", 80)), 8080) == (0, False)

    def test_missing(self) -> None:
        assert get_service_port(_make_service(("http", 8080)), "grpc") == (0, False)
        assert get_service_port(_make_service(("http", 8080)), None) == (0, False)
        assert get_service_port(None, "http") == (0, False)


class TestBackendHelpers:
    def test_number_wins_over_name(self) -> None:
        backend = V1IngressBackend(
            service=V1IngressServiceBackend(name="svc-a", port=V1ServiceBackendPort(name="http", number=80))
        )
        assert backend_port_ref(backend) == 80
        assert backend_service_name(backend) == "svc-a"

    def test_named_port(self) -> None:
        service = V1IngressServiceBackend(name="svc-a", port=V1ServiceBackendPort(name="http"))
        backend = V1IngressBackend(service=service)
        assert backend_port_ref(backend) == "http"

    def test_no_service_backend(self) -> None:
        assert backend_port_ref(V1IngressBackend()) is None
        assert backend_service_name(V1IngressBackend()) == ""

    def test_object_annotations_defaults_to_empty(self) -> None:
        assert object_annotations(V1Service(metadata=V1ObjectMeta(name="x"))) == {}
        assert object_annotations(object()) == {}
