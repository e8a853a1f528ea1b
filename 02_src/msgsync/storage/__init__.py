"""Storage module."""

from .storage import IPersistentStore, Storage

__all__ = ["IPersistentStore", "Storage"]
