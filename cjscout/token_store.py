"""Credential persistence shared between pipeline runs."""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import asdict
from pathlib import Path
from typing import Optional

from .models import Credential

LOGGER = logging.getLogger(__name__)


class MemoryTokenStore:
    """In-process store for tests and one-shot runs."""

    def __init__(self, credential: Optional[Credential] = None) -> None:
        self._credential = credential

    def load(self) -> Optional[Credential]:
        return self._credential

    def save(self, credential: Credential) -> None:
        self._credential = Credential(**asdict(credential))


class JsonFileTokenStore:
    """Single credential row kept as a JSON file."""

    def __init__(self, path: str) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def load(self) -> Optional[Credential]:
        if not self.path.exists():
            return None
        try:
            with self.path.open("r", encoding="utf-8") as f:
                row = json.load(f)
        except (OSError, ValueError) as e:
            LOGGER.warning("Could not read token file %s: %s", self.path, e)
            return None
        return Credential(
            access_token=row.get("access_token") or "",
            access_expiry=float(row.get("access_expiry") or 0),
            refresh_token=row.get("refresh_token") or "",
            refresh_expiry=float(row.get("refresh_expiry") or 0),
            last_auth_call_at=float(row.get("last_auth_call_at") or 0),
        )

    def save(self, credential: Credential) -> None:
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_suffix(self.path.suffix + ".tmp")
            with tmp.open("w", encoding="utf-8") as f:
                json.dump(asdict(credential), f, indent=2)
            tmp.replace(self.path)
