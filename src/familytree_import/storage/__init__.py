"""Person/relationship database and upload storage."""

from familytree_import.storage.database import FamilyTreeDatabase, StorageTransaction
from familytree_import.storage.uploads import UploadInfo, UploadStorage

__all__ = [
    "FamilyTreeDatabase",
    "StorageTransaction",
    "UploadInfo",
    "UploadStorage",
]
