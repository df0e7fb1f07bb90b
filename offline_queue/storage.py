import json
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

log = logging.getLogger("pdca.queue_storage")


class KeyValueStorage(ABC):
    """Device-local durable storage holding serialized values under string keys."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]: ...

    @abstractmethod
    def set(self, key: str, value: str) -> None: ...


class InMemoryKeyValueStorage(KeyValueStorage):
    def __init__(self, initial: Optional[dict[str, str]] = None):
        self.data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value


class JsonFileStorage(KeyValueStorage):
    def __init__(self, path: str):
        self.path = Path(path)

    def _read_all(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except ValueError:
            log.exception("Unreadable storage file %s, treating it as empty", self.path)
            return {}
        if not isinstance(data, dict):
            log.error("Storage file %s does not hold an object, treating it as empty", self.path)
            return {}
        return data

    def get(self, key: str) -> Optional[str]:
        return self._read_all().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._read_all()
        data[key] = value
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with tmp.open("w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, self.path)
