"""Gateway credential folder — age check, structural validation, wipe."""

import json
import shutil
import sys
import time
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple

from chatgate.ports.outbound import (
    CREDENTIALS_INVALID,
    CREDENTIALS_MISSING,
    CREDENTIALS_OK,
    CREDENTIALS_STALE,
)

CREDS_FILE = "creds.json"


def _log(msg: str):
    print(msg, file=sys.stderr)


class CredentialStore:
    """Persists the opaque credential blob the gateway hands back after pairing.

    Implements CredentialPort. Age is measured from the file's mtime, i.e. the
    last time the gateway pushed updated credentials.
    """

    def __init__(
        self,
        auth_dir: str = "auth",
        max_age_hours: float = 24.0,
        clock: Callable[[], float] = time.time,
    ):
        self._auth_dir = Path(auth_dir)
        self._max_age_seconds = max_age_hours * 3600
        self._clock = clock

    @property
    def path(self) -> Path:
        return self._auth_dir / CREDS_FILE

    def saved_at(self) -> Optional[float]:
        try:
            return self.path.stat().st_mtime
        except OSError:
            return None

    def inspect(self) -> Tuple[str, Optional[Dict[str, Any]]]:
        """Classify stored credentials and return them when usable."""
        saved_at = self.saved_at()
        if saved_at is None:
            return CREDENTIALS_MISSING, None
        age = self._clock() - saved_at
        if age > self._max_age_seconds:
            _log(f"[credentials] stored credentials are {age / 3600:.1f}h old")
            return CREDENTIALS_STALE, None
        try:
            creds = json.loads(self.path.read_text(encoding="utf-8"))
        except Exception as e:
            _log(f"[credentials] unreadable credentials: {e}")
            return CREDENTIALS_INVALID, None
        if not self.is_valid(creds):
            return CREDENTIALS_INVALID, None
        return CREDENTIALS_OK, creds

    @staticmethod
    def is_valid(creds: Any) -> bool:
        return isinstance(creds, dict) and bool(creds.get("me"))

    def save(self, creds: Dict[str, Any]) -> None:
        self._auth_dir.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".tmp")
        tmp.write_text(json.dumps(creds, ensure_ascii=False), encoding="utf-8")
        tmp.replace(self.path)

    def wipe(self) -> None:
        """Remove every persisted session file, forcing a fresh pairing."""
        if self._auth_dir.exists():
            shutil.rmtree(self._auth_dir, ignore_errors=True)
            _log(f"[credentials] wiped {self._auth_dir}")
