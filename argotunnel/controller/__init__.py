from argotunnel.controller.controller import DEFAULT_INGRESS_CLASS, IngressController
from argotunnel.controller.router import LinkFactory, TunnelRouter
from argotunnel.controller.translator import SyncTranslator

__all__ = ["DEFAULT_INGRESS_CLASS", "IngressController", "LinkFactory", "SyncTranslator", "TunnelRouter"]
