"""
JSON file sink: one record file per item plus a consolidated manifest.

Layout under ``output_dir``::

    1.json
    2.json
    ...
    manifest.json    # {"1": {...}, "2": {...}}

Per-item files are written as soon as an item succeeds. The manifest is
rewritten from the sink's own record map; rewrites are serialized by a
lock so concurrent items never interleave writes to the shared file.
All writes are atomic replaces, so a later write never leaves an earlier
record half-overwritten.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional

from pydantic import BaseModel

from receipt_ocr.core.config import MANIFEST_FILE, RECORD_SUFFIX
from receipt_ocr.core.exceptions import InvalidConfiguration, PersistenceError
from receipt_ocr.utils.io_utils import safe_stem, write_json

logger = logging.getLogger(__name__)


def _manifest_order(item_id: str) -> tuple[int, int, str]:
    if item_id.isdigit():
        return (0, int(item_id), item_id)
    return (1, 0, item_id)


class JsonFileSink:
    """Persist domain records as JSON files.

    Args:
        output_dir: Directory receiving per-item files and the manifest
        manifest_name: File name of the manifest inside ``output_dir``
        flush_each_item: Rewrite the manifest after every successful item
            (crash-safe); when False the manifest is only written on
            ``flush_manifest``/``close``
    """

    def __init__(
        self,
        output_dir: str | Path,
        manifest_name: str = MANIFEST_FILE,
        flush_each_item: bool = True,
    ) -> None:
        self.output_dir = Path(output_dir)
        self.manifest_path = self.output_dir / manifest_name
        self.flush_each_item = flush_each_item
        self._records: dict[str, dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    @property
    def records(self) -> dict[str, dict[str, Any]]:
        return dict(self._records)

    def record_path(self, item_id: str) -> Path:
        """Deterministic location of an item's record file."""
        return self.output_dir / f"{safe_stem(item_id)}{RECORD_SUFFIX}"

    def check_item_ids(self, item_ids: Iterable[str]) -> None:
        """Reject ids whose record files would clash before any work starts.

        Raises:
            InvalidConfiguration: If an id cannot become a file name, maps
                onto the manifest, or shares a file name with another id
        """
        owners: dict[Path, str] = {}
        for item_id in item_ids:
            try:
                path = self.record_path(item_id)
            except ValueError as exc:
                raise InvalidConfiguration(str(exc), field="items") from exc
            if path == self.manifest_path:
                raise InvalidConfiguration(
                    f"Item id {item_id!r} would overwrite the manifest {path.name}",
                    field="items",
                )
            if path in owners and owners[path] != item_id:
                raise InvalidConfiguration(
                    f"Item ids {owners[path]!r} and {item_id!r} "
                    f"share the record file {path.name}",
                    field="items",
                )
            owners[path] = item_id

    def open(self) -> None:
        """Start a run: create the directory and reset the manifest to empty."""
        self._records.clear()
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            write_json(self.manifest_path, {})
        except OSError as exc:
            raise PersistenceError("<manifest>", str(self.manifest_path), str(exc)) from exc
        logger.info(f"Output directory ready: {self.output_dir}")

    async def write(self, item_id: str, record: BaseModel) -> Path:
        """Persist one item's record.

        Raises:
            PersistenceError: If the record file cannot be written. The
                manifest and other items' files are left untouched.
        """
        try:
            path = self.record_path(item_id)
        except ValueError as exc:
            raise PersistenceError(item_id, str(self.output_dir), str(exc)) from exc

        payload = record.model_dump(mode="json")
        try:
            await asyncio.to_thread(write_json, path, payload)
        except OSError as exc:
            raise PersistenceError(item_id, str(path), str(exc)) from exc
        logger.info(f"Record saved to: {path}", extra={"item_id": item_id})

        async with self._lock:
            self._records[item_id] = payload
            if self.flush_each_item:
                await self._flush_locked(best_effort=True)
        return path

    async def flush_manifest(
        self, records: Optional[Mapping[str, BaseModel]] = None
    ) -> None:
        """Overwrite the manifest.

        Args:
            records: Records to publish. Defaults to everything this sink
                has written during the run.

        Raises:
            PersistenceError: If the manifest cannot be written
        """
        async with self._lock:
            if records is not None:
                self._records = {
                    item_id: record.model_dump(mode="json")
                    for item_id, record in records.items()
                }
            await self._flush_locked(best_effort=False)

    async def close(self) -> None:
        """Final flush at the end of a run."""
        await self.flush_manifest()

    async def _flush_locked(self, best_effort: bool) -> None:
        snapshot = {
            item_id: self._records[item_id]
            for item_id in sorted(self._records, key=_manifest_order)
        }
        try:
            await asyncio.to_thread(write_json, self.manifest_path, snapshot)
        except OSError as exc:
            if not best_effort:
                raise PersistenceError(
                    "<manifest>", str(self.manifest_path), str(exc)
                ) from exc
            # The record file is already durable; the next flush catches up.
            logger.warning(
                f"Manifest flush failed, will retry on next write: {exc}",
                extra={"error_code": "MANIFEST_FLUSH_FAILED"},
            )
