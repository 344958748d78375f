"""
Temporary storage for uploaded GEDCOM files.

Files live in ``<upload_dir>/<upload_id>/<sanitized file name>``. Upload
ids have the form ``{user_id}_{timestamp}_{random hex}``.
"""

from __future__ import annotations

import logging
import re
import secrets
import shutil
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

logger = logging.getLogger(__name__)

MAX_FILE_SIZE = 10 * 1024 * 1024  # 10MB
MAX_FILENAME_LENGTH = 255
DEFAULT_FILE_NAME = "upload.ged"

_UPLOAD_ID = re.compile(r"^[A-Za-z0-9_-]+$")


# =============================================================================
# Validation
# =============================================================================

def validate_file_type(file_name: str | None) -> bool:
    """Only ``.ged`` files (case-insensitive) are accepted."""
    if not file_name:
        return False
    return file_name.rsplit(".", 1)[-1].lower() == "ged" and "." in file_name


def validate_file_size(file_size: int | None, max_size: int = MAX_FILE_SIZE) -> bool:
    """Between 1 byte and ``max_size`` inclusive."""
    if not isinstance(file_size, int) or isinstance(file_size, bool):
        return False
    return 1 <= file_size <= max_size


def sanitize_file_name(file_name: str | None) -> str:
    """Strip path separators, parent references and null bytes."""
    if not file_name:
        return DEFAULT_FILE_NAME

    sanitized = file_name.replace("\x00", "")
    sanitized = re.sub(r"[/\\]", "", sanitized)
    sanitized = sanitized.replace("..", "")
    sanitized = sanitized.strip()

    if not sanitized:
        return DEFAULT_FILE_NAME

    if len(sanitized) > MAX_FILENAME_LENGTH:
        stem, dot, extension = sanitized.rpartition(".")
        if dot:
            sanitized = stem[:MAX_FILENAME_LENGTH - len(extension) - 1] + "." + extension
        else:
            sanitized = sanitized[:MAX_FILENAME_LENGTH]

    return sanitized


# =============================================================================
# Storage
# =============================================================================

@dataclass
class UploadInfo:
    """What is known about one upload."""
    upload_id: str
    exists: bool = False
    file_name: str | None = None
    file_size: int | None = None
    file_path: Path | None = None
    created_at: datetime | None = None


class UploadStorage:
    """Filesystem-backed store for uploaded GEDCOM files."""

    def __init__(self, base_dir: str | Path, max_file_size: int = MAX_FILE_SIZE):
        self.base_dir = Path(base_dir)
        self.max_file_size = max_file_size

    @staticmethod
    def generate_upload_id(user_id: int | str) -> str:
        timestamp = int(time.time() * 1000)
        return f"{user_id}_{timestamp}_{secrets.token_hex(8)}"

    def _upload_dir(self, upload_id: str) -> Path:
        if not _UPLOAD_ID.match(upload_id or ""):
            raise ValueError(f"Invalid upload id: {upload_id!r}")
        return self.base_dir / upload_id

    def save_uploaded_file(self, upload_id: str, file_name: str, data: bytes) -> UploadInfo:
        """
        Validate and store an upload.

        Raises ValueError when the name is not a ``.ged`` file or the size is
        outside the allowed range.
        """
        if not validate_file_type(file_name):
            raise ValueError("Invalid file type. Only .ged files are accepted")
        if not validate_file_size(len(data), self.max_file_size):
            raise ValueError(
                f"File size must be between 1 byte and {self.max_file_size // (1024 * 1024)}MB"
            )

        upload_dir = self._upload_dir(upload_id)
        upload_dir.mkdir(parents=True, exist_ok=True)

        file_path = upload_dir / sanitize_file_name(file_name)
        file_path.write_bytes(data)
        logger.info("Stored upload %s (%d bytes)", upload_id, len(data))

        return self.get_file_info(upload_id)

    def get_file_info(self, upload_id: str) -> UploadInfo:
        try:
            upload_dir = self._upload_dir(upload_id)
        except ValueError:
            return UploadInfo(upload_id=upload_id)

        if not upload_dir.is_dir():
            return UploadInfo(upload_id=upload_id)

        files = sorted(p for p in upload_dir.iterdir() if p.is_file())
        if not files:
            return UploadInfo(upload_id=upload_id)

        file_path = files[0]
        stat = file_path.stat()
        return UploadInfo(
            upload_id=upload_id,
            exists=True,
            file_name=file_path.name,
            file_size=stat.st_size,
            file_path=file_path,
            created_at=datetime.fromtimestamp(stat.st_mtime),
        )

    def read(self, upload_id: str) -> bytes | None:
        """Raw file content, or None when the upload is unknown."""
        info = self.get_file_info(upload_id)
        if not info.exists or info.file_path is None:
            return None
        return info.file_path.read_bytes()

    def cleanup(self, upload_id: str) -> None:
        """Remove an upload. Missing uploads are ignored."""
        try:
            upload_dir = self._upload_dir(upload_id)
        except ValueError:
            return
        shutil.rmtree(upload_dir, ignore_errors=True)
        logger.debug("Cleaned up upload %s", upload_id)
