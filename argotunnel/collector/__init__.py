from argotunnel.collector.informer import InformerSet, ResourceEventHandler, ResourceInformer, new_informer_set
from argotunnel.collector.watcher import BaseWatcher

__all__ = [
    "BaseWatcher",
    "InformerSet",
    "ResourceEventHandler",
    "ResourceInformer",
    "new_informer_set",
]
