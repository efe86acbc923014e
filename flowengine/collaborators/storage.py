# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Local artifact storage

Files land in {base_dir}/{execution_id}/{file_name}; the returned URL is the
public URL prefix joined with the same relative path, or a file:// URL when
no prefix is configured.
"""

from pathlib import Path
from typing import Optional

import aiofiles

from flowengine.core.errors import CollaboratorError
from flowengine.engine.variables import sanitize_file_name
from .base import FileMetadata, StoredFile


class LocalFileStorage:
    def __init__(self, base_dir: str, public_url: Optional[str] = None):
        self.base_dir = Path(base_dir)
        self.public_url = public_url.rstrip("/") if public_url else None

    async def store(self, buffer: bytes, metadata: FileMetadata) -> StoredFile:
        folder = sanitize_file_name(metadata.execution_id or "shared")
        file_name = sanitize_file_name(metadata.file_name)
        target = self.base_dir / folder / file_name

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(target, "wb") as f:
                await f.write(buffer)
        except OSError as e:
            raise CollaboratorError(f"Failed to store {file_name}: {e}", code="STORAGE_ERROR")

        if self.public_url:
            url = f"{self.public_url}/{folder}/{file_name}"
        else:
            url = target.resolve().as_uri()
        return StoredFile(url=url, size=len(buffer))
