"""
JSON file backed cache store.
"""
import asyncio
import json
import os
import stat
import tempfile
from pathlib import Path
from typing import Optional

import structlog
from pydantic import ValidationError

from mechanics_sync.config import get_settings
from mechanics_sync.exceptions import CacheWriteError
from mechanics_sync.models import MechanicsCache
from mechanics_sync.storage.base import CacheStore

logger = structlog.get_logger()

DEFAULT_FILE_MODE = 0o644


class FileCacheStore(CacheStore):
    """
    Stores the cache as one JSON document.

    The file is created lazily on the first save. Saves write a sibling
    temp file and rename it over the target, so readers never observe a
    half-written document.
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path or get_settings().mechanics_cache_file)

    async def load(self) -> MechanicsCache:
        return await asyncio.to_thread(self._read)

    async def save(self, cache: MechanicsCache) -> None:
        await asyncio.to_thread(self._write, cache)

    async def clear(self) -> None:
        await asyncio.to_thread(self._remove)

    def _read(self) -> MechanicsCache:
        try:
            raw = self.path.read_bytes()
        except FileNotFoundError:
            logger.debug("Cache file not found, starting empty", path=str(self.path))
            return MechanicsCache()
        except OSError as e:
            logger.warning("Cache file unreadable, starting empty", path=str(self.path), error=str(e))
            return MechanicsCache()

        try:
            return MechanicsCache.model_validate(json.loads(raw.decode("utf-8")))
        except (UnicodeDecodeError, json.JSONDecodeError, ValidationError) as e:
            logger.warning("Cache file corrupt, starting empty", path=str(self.path), error=str(e))
            return MechanicsCache()

    def _write(self, cache: MechanicsCache) -> None:
        document = json.dumps(cache.to_document(), indent=2, ensure_ascii=False)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.path.parent,
                prefix=f".{self.path.name}.",
                suffix=".tmp",
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(document)
                os.chmod(tmp_name, self._file_mode())
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            logger.error("Failed to write cache file", path=str(self.path), error=str(e))
            raise CacheWriteError(f"Failed to write {self.path}: {e}") from e

        logger.debug("Cache file written", path=str(self.path), games=len(cache.mechanics))

    def _file_mode(self) -> int:
        # mkstemp creates 0600; keep the existing mode across saves
        try:
            return stat.S_IMODE(self.path.stat().st_mode)
        except FileNotFoundError:
            return DEFAULT_FILE_MODE

    def _remove(self) -> None:
        self.path.unlink(missing_ok=True)
        logger.info("Cache file removed", path=str(self.path))
