"""
Durable storage for bridge transaction history.

Each owner's history is stored as one document holding the full list of
records; writers always replace the whole list.
"""

import json
import logging
import os
import re
import tempfile
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

Document = List[Dict[str, Any]]

_OWNER_FILE = re.compile(r"^[0-9a-zA-Z_\-]+$")


class TransactionStorage(ABC):
    """Storage boundary for per-owner transaction lists."""

    @abstractmethod
    async def get(self, owner: str) -> Document:
        """Stored records for ``owner`` (empty list when none)."""
        pass

    @abstractmethod
    async def put(self, owner: str, records: Document) -> None:
        """Replace ``owner``'s stored records."""
        pass

    @abstractmethod
    async def owners(self) -> List[str]:
        pass


class InMemoryTransactionStorage(TransactionStorage):
    def __init__(self) -> None:
        self._data: Dict[str, Document] = {}

    async def get(self, owner: str) -> Document:
        return [dict(r) for r in self._data.get(owner.lower(), [])]

    async def put(self, owner: str, records: Document) -> None:
        self._data[owner.lower()] = [dict(r) for r in records]

    async def owners(self) -> List[str]:
        return list(self._data.keys())


class JsonFileTransactionStorage(TransactionStorage):
    """One ``<owner>.json`` file per owner, written via atomic replace."""

    def __init__(self, directory: Union[str, Path], logger: Optional[logging.Logger] = None):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self.logger = logger or logging.getLogger(__name__)

    def _path(self, owner: str) -> Path:
        owner = owner.lower()
        if not _OWNER_FILE.match(owner):
            raise ValueError(f"Invalid owner address: {owner!r}")
        return self.directory / f"{owner}.json"

    async def get(self, owner: str) -> Document:
        path = self._path(owner)
        if not path.exists():
            return []
        try:
            with path.open("r", encoding="utf-8") as fh:
                data = json.load(fh)
        except ValueError as e:
            self._quarantine(path, f"invalid JSON: {e}")
            return []
        if not isinstance(data, list):
            self._quarantine(path, f"expected a list, got {type(data).__name__}")
            return []
        return data

    def _quarantine(self, path: Path, reason: str) -> Path:
        """Move an unreadable history file aside so the next write cannot replace it."""
        target = path.with_name(f"{path.name}.corrupt-{int(time.time())}")
        os.replace(path, target)
        self.logger.error(f"Unreadable transaction history {path} ({reason}); moved to {target.name}")
        return target

    async def put(self, owner: str, records: Document) -> None:
        path = self._path(owner)
        fd, tmp_name = tempfile.mkstemp(dir=str(self.directory), prefix=".tx-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(records, fh, indent=2)
            os.replace(tmp_name, path)
        except Exception:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    async def owners(self) -> List[str]:
        return sorted(p.stem for p in self.directory.glob("*.json") if not p.name.startswith("."))
