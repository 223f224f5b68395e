"""
Ephemeral per-device key-value storage for in-progress modules.

Holds the module answer snapshot, the timer deadline and the last question
viewed before review. Nothing here is authoritative; it only has to survive a
page reload so a student cannot reset the clock by refreshing.
"""
import json
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, MutableMapping, Optional, Protocol

logger = logging.getLogger(__name__)


class KeyValueStorage(Protocol):
    def get(self, key: str) -> Optional[Any]: ...

    def set(self, key: str, value: Any) -> None: ...

    def remove(self, key: str) -> None: ...


@dataclass(frozen=True)
class ModuleStorageKeys:
    """Storage keys for one module of one user's attempt."""

    user_id: str
    test_id: int
    module_number: int

    @property
    def prefix(self) -> str:
        return f"sat-{self.user_id}-test-{self.test_id}-module-{self.module_number}"

    @property
    def snapshot(self) -> str:
        return self.prefix

    @property
    def timer(self) -> str:
        return f"{self.prefix}-timer"

    @property
    def last_question(self) -> str:
        return f"{self.prefix}-last-question"


class MemoryStorage:
    """Dict-backed storage. Values are JSON round-tripped like the real backends."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, str] = {}
        for key, value in (initial or {}).items():
            self.set(key, value)

    def get(self, key: str) -> Optional[Any]:
        raw = self._data.get(key)
        return None if raw is None else json.loads(raw)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = json.dumps(value)

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self):
        return list(self._data)


class SessionStateStorage:
    """
    Storage on top of a Streamlit ``st.session_state``-like mapping.

    Session state is lost when the browser tab reloads, so the page layer only
    uses this for per-run scratch values; durable module state goes to
    JsonFileStorage.
    """

    def __init__(self, state: MutableMapping[str, Any], namespace: str = "sat_mirror"):
        self._state = state
        self._namespace = namespace

    def _bucket(self) -> Dict[str, Any]:
        if self._namespace not in self._state:
            self._state[self._namespace] = {}
        return self._state[self._namespace]

    def get(self, key: str) -> Optional[Any]:
        return self._bucket().get(key)

    def set(self, key: str, value: Any) -> None:
        self._bucket()[key] = json.loads(json.dumps(value))

    def remove(self, key: str) -> None:
        self._bucket().pop(key, None)


_SAFE_KEY_RE = re.compile(r"[^A-Za-z0-9_.-]")


def safe_name(name: str) -> str:
    """Single file-name segment: anything outside ``[A-Za-z0-9_.-]`` becomes ``_``."""
    return _SAFE_KEY_RE.sub("_", name)


class JsonFileStorage:
    """One JSON file per key under a directory (per device / per server)."""

    def __init__(self, directory: Path | str):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.directory / f"{safe_name(key)}.json"

    def get(self, key: str) -> Optional[Any]:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Ignoring unreadable storage entry %s: %s", key, e)
            return None

    def set(self, key: str, value: Any) -> None:
        path = self._path(key)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(json.dumps(value), encoding="utf-8")
        os.replace(tmp, path)

    def remove(self, key: str) -> None:
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            pass
