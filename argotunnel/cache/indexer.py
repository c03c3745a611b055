"""Indexed in-memory object store backed by Kubernetes watch streams.

Stores deserialized API objects keyed by ``namespace/name`` and maintains
any number of named secondary indexes over them.

Indexes
-------
namespace  – every object maps to its own namespace (all four kinds).
secret     – Ingress only: ``namespace/secretName`` of the TLS entry that
             covers each HTTP rule host, or the configured default secret.
service    – Ingress only: ``namespace/serviceName`` of every path backend.

Index maintenance
-----------------
Every add/update/delete recomputes the touched object's index entries from
scratch; entries are never patched incrementally.  An index function that
rejects an object raises :class:`IndexFuncError`; the store logs the error
and drops the event, leaving its previous state intact.
"""

from __future__ import annotations

import builtins
from collections import defaultdict
from collections.abc import Callable, Iterable
from typing import Any

from argotunnel.k8s import backend_service_name, is_ingress, object_name, object_namespace
from argotunnel.models.resources import Resource, item_key_func
from argotunnel.observability.logging import get_logger
from argotunnel.observability.metrics import index_errors_total, store_objects

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

NAMESPACE_INDEX: str = "namespace"
SECRET_INDEX: str = "secret"
SERVICE_INDEX: str = "service"

IndexFunc = Callable[[Any], list[str]]

__all__ = [
    "NAMESPACE_INDEX",
    "SECRET_INDEX",
    "SERVICE_INDEX",
    "IndexFunc",
    "IndexFuncError",
    "IndexedStore",
    "ingress_secret_index_func",
    "ingress_service_index_func",
    "item_key_func",
    "meta_namespace_index_func",
    "meta_namespace_key_func",
]


class IndexFuncError(TypeError):
    """Raised by an index function handed an object it cannot index."""


# ---------------------------------------------------------------------------
# Key and index functions
# ---------------------------------------------------------------------------


def meta_namespace_key_func(obj: Any) -> str:
    """Return the store key of any namespaced API object."""
    return item_key_func(object_namespace(obj), object_name(obj))


def meta_namespace_index_func(obj: Any) -> list[str]:
    """Index an object under its namespace."""
    return [object_namespace(obj)]


def ingress_secret_index_func(secret: Resource | None = None) -> IndexFunc:
    """Build the ingress→secret index function.

    For each HTTP rule with a host, in rule order, the function emits the
    key of the TLS secret whose host list contains the rule host.  When no
    TLS entry covers the host it emits ``secret``'s key if a default secret
    is configured, and nothing otherwise.  Duplicates are preserved.

    Args:
        secret: Optional default origin-certificate secret.
    """

    def index(obj: Any) -> list[str]:
        if not is_ingress(obj):
            raise IndexFuncError(f"index unexpected obj type: {type(obj).__name__}")
        namespace = object_namespace(obj)
        spec = obj.spec
        host_secret: dict[str, Resource] = {}
        for tls in (spec.tls if spec is not None else None) or []:
            if not tls.secret_name:
                continue
            for host in tls.hosts or []:
                host_secret[host] = Resource(namespace=namespace, name=tls.secret_name)

        idx: list[str] = []
        for rule in (spec.rules if spec is not None else None) or []:
            if rule.http is None or not rule.host:
                continue
            matched = host_secret.get(rule.host)
            if matched is not None:
                idx.append(matched.key)
            elif secret is not None:
                idx.append(secret.key)
        return idx

    return index


def ingress_service_index_func() -> IndexFunc:
    """Build the ingress→service index function.

    Emits ``namespace/serviceName`` for every path of every HTTP rule with a
    host, in rule then path order.  Paths with an empty backend service name
    are skipped.
    """

    def index(obj: Any) -> list[str]:
        if not is_ingress(obj):
            raise IndexFuncError(f"index unexpected obj type: {type(obj).__name__}")
        namespace = object_namespace(obj)
        spec = obj.spec
        idx: list[str] = []
        for rule in (spec.rules if spec is not None else None) or []:
            if rule.http is None or not rule.host:
                continue
            for path in rule.http.paths or []:
                name = backend_service_name(path.backend)
                if name:
                    idx.append(item_key_func(namespace, name))
        return idx

    return index


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class IndexedStore:
    """Key→object store with named secondary indexes.

    Only the owning informer writes to the store; the translator and
    controller read from it.  Every read is a plain dict lookup.

    Example::

        store = IndexedStore("Ingress", {SERVICE_INDEX: ingress_service_index_func()})
        store.add(ingress)
        store.by_index(SERVICE_INDEX, "default/web")
    """

    def __init__(self, kind: str, indexers: dict[str, IndexFunc] | None = None) -> None:
        self._kind = kind
        self._log = get_logger(f"store.{kind.lower()}")
        self._items: dict[str, Any] = {}
        self._indexers: dict[str, IndexFunc] = {NAMESPACE_INDEX: meta_namespace_index_func}
        if indexers:
            self._indexers.update(indexers)

        # index name -> index value -> set of object keys
        self._indices: dict[str, dict[str, set[str]]] = defaultdict(lambda: defaultdict(set))
        # object key -> index name -> values last computed for that object
        self._index_values: dict[str, dict[str, list[str]]] = {}

    @property
    def kind(self) -> str:
        return self._kind

    # ------------------------------------------------------------------
    # Write interface (called by informers)
    # ------------------------------------------------------------------

    def add(self, obj: Any) -> bool:
        """Insert or replace ``obj``.  Returns False if the event was dropped."""
        return self.update(obj)

    def update(self, obj: Any) -> bool:
        """Insert or replace ``obj``, recomputing all of its index entries.

        Returns:
            False if an index function rejected the object; the store is
            then left unchanged.
        """
        key = meta_namespace_key_func(obj)
        values = self._compute_index_values(key, obj)
        if values is None:
            return False
        self._drop_index_entries(key)
        self._items[key] = obj
        self._index_values[key] = values
        for index_name, index_values in values.items():
            for value in index_values:
                self._indices[index_name][value].add(key)
        store_objects.labels(kind=self._kind).set(len(self._items))
        return True

    def delete(self, obj: Any) -> bool:
        """Remove ``obj``.  Returns True if an entry was removed."""
        return self.delete_key(meta_namespace_key_func(obj))

    def delete_key(self, key: str) -> bool:
        if key not in self._items:
            return False
        self._drop_index_entries(key)
        del self._items[key]
        store_objects.labels(kind=self._kind).set(len(self._items))
        return True

    def replace(self, objs: Iterable[Any]) -> None:
        """Replace the whole store content, e.g. after a relist."""
        self._items.clear()
        self._indices.clear()
        self._index_values.clear()
        for obj in objs:
            self.update(obj)
        store_objects.labels(kind=self._kind).set(len(self._items))

    # ------------------------------------------------------------------
    # Read interface
    # ------------------------------------------------------------------

    def get_by_key(self, key: str) -> Any | None:
        """Return the object stored under ``namespace/name``, or None."""
        return self._items.get(key)

    def get(self, namespace: str, name: str) -> Any | None:
        return self._items.get(item_key_func(namespace, name))

    def list(self) -> builtins.list[Any]:
        return builtins.list(self._items.values())

    def list_keys(self) -> builtins.list[str]:
        return builtins.list(self._items)

    def index_keys(self, index_name: str, value: str) -> builtins.list[str]:
        """Return the sorted keys of objects indexed under ``value``.

        Raises:
            KeyError: if no indexer named ``index_name`` is registered.
        """
        if index_name not in self._indexers:
            raise KeyError(f"index {index_name!r} does not exist")
        return sorted(self._indices.get(index_name, {}).get(value, ()))

    def by_index(self, index_name: str, value: str) -> builtins.list[Any]:
        """Return the objects indexed under ``value``, ordered by key."""
        return [self._items[key] for key in self.index_keys(index_name, value)]

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, key: object) -> bool:
        return key in self._items

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _compute_index_values(self, key: str, obj: Any) -> dict[str, builtins.list[str]] | None:
        values: dict[str, builtins.list[str]] = {}
        for index_name, index_func in self._indexers.items():
            try:
                values[index_name] = index_func(obj)
            except IndexFuncError as exc:
                index_errors_total.labels(kind=self._kind, index=index_name).inc()
                self._log.warning("store_index_rejected", key=key, index=index_name, error=str(exc))
                return None
        return values

    def _drop_index_entries(self, key: str) -> None:
        previous = self._index_values.pop(key, None)
        if not previous:
            return
        for index_name, index_values in previous.items():
            per_index = self._indices.get(index_name)
            if per_index is None:
                continue
            for value in index_values:
                keys = per_index.get(value)
                if keys is None:
                    continue
                keys.discard(key)
                if not keys:
                    del per_index[value]
