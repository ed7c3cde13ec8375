"""Contracts of the collaborators the controller drives.

Any object with matching methods works; tests pass in-memory fakes.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Mapping, Optional, Protocol

from pydantic import BaseModel


class InferenceInvoker(Protocol):
    """Performs one call to the inference service for one source document.

    Must be safe to call concurrently for distinct items. Raises
    TransientInferenceError or PermanentInferenceError on failure.
    """

    async def invoke(self, source_ref: str) -> str: ...


class ResultTransformer(Protocol):
    """Maps a raw payload to a domain record or raises MalformedResponseError."""

    def transform(self, raw: str) -> BaseModel: ...


class PersistenceSink(Protocol):
    """Durable per-item output plus a consolidated manifest."""

    def check_item_ids(self, item_ids: Iterable[str]) -> None:
        """Raise InvalidConfiguration if two ids would share a destination."""

    def open(self) -> None: ...

    async def write(self, item_id: str, record: BaseModel) -> Path: ...

    async def flush_manifest(
        self, records: Optional[Mapping[str, BaseModel]] = None
    ) -> None: ...

    async def close(self) -> None: ...
