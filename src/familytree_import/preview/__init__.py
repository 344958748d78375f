"""Preview sessions between parse and import."""

from familytree_import.preview.store import PreviewStore

__all__ = ["PreviewStore"]
