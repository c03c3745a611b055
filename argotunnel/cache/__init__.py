from argotunnel.cache.indexer import IndexedStore, IndexFuncError

__all__ = ["IndexFuncError", "IndexedStore"]
