from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from .models import Snapshot

logger = logging.getLogger(__name__)


class SnapshotStore:
    """Loads and saves the whole application state as one snapshot.

    Every mutation runs through :meth:`transaction`, which holds a single
    writer lock across ``load -> mutate -> save`` so concurrent intents cannot
    overwrite each other's changes. A transaction whose body raises is not
    saved.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()

    def load(self) -> Snapshot:
        raise NotImplementedError

    def save(self, snapshot: Snapshot) -> None:
        raise NotImplementedError

    def close(self) -> None:
        return None

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    @contextmanager
    def transaction(self) -> Iterator[Snapshot]:
        with self._lock:
            snapshot = self.load()
            yield snapshot
            self.save(snapshot)

    def read(self) -> Snapshot:
        with self._lock:
            return self.load()


class InMemorySnapshotStore(SnapshotStore):
    """Keeps the serialised snapshot in memory; each load returns a fresh copy."""

    def __init__(self, initial: Snapshot | None = None) -> None:
        super().__init__()
        self._data: dict[str, Any] = (initial or Snapshot()).to_dict()

    def load(self) -> Snapshot:
        return Snapshot.from_dict(json.loads(json.dumps(self._data)))

    def save(self, snapshot: Snapshot) -> None:
        self._data = snapshot.to_dict()


class JsonFileSnapshotStore(SnapshotStore):
    """Whole-file JSON database, rewritten atomically on every save."""

    def __init__(self, path: str | os.PathLike[str]) -> None:
        super().__init__()
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> Snapshot:
        if not self._path.exists():
            return Snapshot()
        try:
            with self._path.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
        except (OSError, ValueError):
            logger.exception("failed to read snapshot file %s; starting empty", self._path)
            return Snapshot()
        if not isinstance(data, dict):
            logger.error("snapshot file %s does not hold an object; starting empty", self._path)
            return Snapshot()
        return Snapshot.from_dict(data)

    def save(self, snapshot: Snapshot) -> None:
        fd, tmp_name = tempfile.mkstemp(prefix=".snapshot-", suffix=".json", dir=self._path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(snapshot.to_dict(), handle, indent=2)
            os.replace(tmp_name, self._path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise
