from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)


def photo_prefix(vin: str) -> str:
    return vin.strip().lower()


class PhotoStore(Protocol):
    async def delete_for_vin(self, vin: str) -> int: ...


class LocalPhotoStore:
    """Photos laid out as ``<root>/<lower-case vin>/<file>``."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def folder_for(self, vin: str) -> Path:
        return self.root / photo_prefix(vin)

    def list_photos(self, vin: str) -> list[str]:
        folder = self.folder_for(vin)
        if not folder.is_dir():
            return []
        return sorted(f"{photo_prefix(vin)}/{p.name}" for p in folder.iterdir() if p.is_file())

    async def delete_for_vin(self, vin: str) -> int:
        folder = self.folder_for(vin)
        if not folder.is_dir():
            return 0
        removed = sum(1 for p in folder.iterdir() if p.is_file())
        shutil.rmtree(folder)
        logger.info("Deleted %d photos for VIN %s", removed, vin)
        return removed
