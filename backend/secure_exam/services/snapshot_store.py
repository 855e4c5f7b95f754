import base64
import binascii
import logging
import os
import re
import time
from typing import Optional

import aiofiles

from ..core.config import settings
from ..core.exceptions import ValidationError
from ..utils.file_paths import FileTypes, ensure_upload_directory, get_upload_url

logger = logging.getLogger(__name__)

_DATA_URL_PREFIX = re.compile(r"^data:image/\w+;base64,")
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


class SnapshotStore:
    """Writes webcam snapshots to disk and returns the URL they are served from."""

    def __init__(self, max_size: Optional[int] = None):
        self.max_size = max_size or settings.max_snapshot_size

    async def save_bytes(self, content: bytes, filename: str) -> str:
        if len(content) > self.max_size:
            raise ValidationError(f"Snapshot exceeds {self.max_size} bytes")

        directory = ensure_upload_directory(FileTypes.SNAPSHOTS)
        safe_name = _UNSAFE_CHARS.sub("_", os.path.basename(filename)) or "snapshot.png"
        stored_name = f"{int(time.time() * 1000)}-{safe_name}"

        async with aiofiles.open(os.path.join(directory, stored_name), "wb") as buffer:
            await buffer.write(content)

        logger.info(f"Snapshot saved: {stored_name}, size: {len(content)} bytes")
        return get_upload_url(FileTypes.SNAPSHOTS, stored_name)

    async def save_base64(self, image_data: str, attempt_id: int) -> str:
        payload = _DATA_URL_PREFIX.sub("", image_data)
        try:
            content = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError):
            raise ValidationError("Snapshot image data is not valid base64")
        return await self.save_bytes(content, f"{attempt_id}.png")
