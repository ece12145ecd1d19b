from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol

from sharespace.core import json


log = logging.getLogger(__name__)


class TokenStorage(Protocol):
    def load(self) -> str | None: ...

    def save(self, token: str) -> None: ...

    def clear(self) -> None: ...


class MemoryTokenStorage:
    def __init__(self, token: str | None = None):
        self._token = token

    def load(self) -> str | None:
        return self._token

    def save(self, token: str) -> None:
        self._token = token

    def clear(self) -> None:
        self._token = None


class FileTokenStorage:
    """Keeps the access token in a small JSON file between process runs."""

    def __init__(self, path: str | Path):
        self._path = Path(path)

    def load(self) -> str | None:
        try:
            data = json.loads(self._path.read_bytes())
        except FileNotFoundError:
            return None
        except ValueError as e:
            log.warning("[session] ignoring unreadable session file %s: %s", self._path, e)
            return None
        token = data.get("access_token") if isinstance(data, dict) else None
        return str(token) if token else None

    def save(self, token: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps({"access_token": token}), encoding="utf-8")

    def clear(self) -> None:
        self._path.unlink(missing_ok=True)
