"""sectiongate storage layer."""

from sectiongate.storage.base import MembershipBackend
from sectiongate.storage.metadata_store import MetadataStore

__all__ = ["MembershipBackend", "MetadataStore"]
