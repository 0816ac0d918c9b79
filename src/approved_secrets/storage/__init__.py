"""
Storage package - key-value persistence for roles, requests and issues.

Contains:
- base: the Storage protocol and an in-memory implementation
- configmap: a Kubernetes ConfigMap-backed implementation
- accessor: namespaced, per-key locked JSON access on top of any Storage
"""

from .accessor import StorageAccessor
from .base import InMemoryStorage, Storage, WriteConflictError, list_children

__all__ = [
    "InMemoryStorage",
    "Storage",
    "StorageAccessor",
    "WriteConflictError",
    "list_children",
]
