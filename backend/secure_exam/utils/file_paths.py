"""
Upload directory layout.

Files live under ``settings.upload_base_dir``; URLs handed back to clients
are rooted at ``/uploads`` where the directory is mounted as static files.
"""
import os

from ..core.config import settings

UPLOADS_URL_PREFIX = "/uploads"


class FileTypes:
    SNAPSHOTS = "snapshots"


def get_upload_root() -> str:
    return os.path.abspath(settings.upload_base_dir)


def ensure_upload_directory(file_type: str) -> str:
    """Create the directory for ``file_type`` and return its absolute path."""
    full_dir = os.path.join(get_upload_root(), file_type)
    os.makedirs(full_dir, exist_ok=True)
    return full_dir


def get_upload_url(file_type: str, filename: str) -> str:
    return f"{UPLOADS_URL_PREFIX}/{file_type}/{filename}"
