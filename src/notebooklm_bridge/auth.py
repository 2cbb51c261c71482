"""Session storage for the NotebookLM bridge.

One session record lives at ``~/.notebooklm-mcp/auth.json``:

    {"cookies": "SID=...; HSID=...", "updatedAt": "2026-01-01T00:00:00+00:00"}

The record is written to a temporary file next to the target and moved into
place with ``os.replace``, so readers see either the old record or the new
one, never a partial write.
"""

import json
import logging
import os
import sys
import tempfile
import time
from datetime import datetime, timezone
from pathlib import Path

from .cookies import dedupe_cookie_header
from .errors import AuthInProgressError, NotAuthenticatedError

logger = logging.getLogger("notebooklm_bridge.auth")

AUTH_DIR_NAME = ".notebooklm-mcp"


def get_cache_path() -> Path:
    """Get the path to the session record."""
    override = os.environ.get("NOTEBOOKLM_AUTH_FILE")
    if override:
        return Path(override).expanduser()
    return Path.home() / AUTH_DIR_NAME / "auth.json"


def save_cookies(cookie_string: str, path: Path | None = None) -> Path:
    """Persist a cookie header string with the current timestamp.

    Returns:
        The path written.
    """
    path = path or get_cache_path()
    path.parent.mkdir(parents=True, exist_ok=True)

    record = {
        "cookies": cookie_string,
        "updatedAt": datetime.now(timezone.utc).isoformat(),
    }

    fd, tmp_name = tempfile.mkstemp(prefix=".auth-", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(record, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise

    logger.debug("Saved session record to %s (%d chars)", path, len(cookie_string))
    return path


def load_record(path: Path | None = None) -> dict:
    """Load the raw session record.

    Raises:
        NotAuthenticatedError: If no usable record exists.
    """
    path = path or get_cache_path()
    if not path.exists():
        raise NotAuthenticatedError()

    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise NotAuthenticatedError(f"Saved session at {path} is unreadable: {e.__class__.__name__}") from e

    if not isinstance(data, dict) or not isinstance(data.get("cookies"), str):
        raise NotAuthenticatedError(f"Saved session at {path} has no cookie string")
    return data


def load_cookies(path: Path | None = None) -> str:
    """Load the saved cookie header string."""
    return load_record(path)["cookies"]


def get_saved_cookies() -> str:
    """Resolve the cookie header for a client.

    ``NOTEBOOKLM_COOKIES`` wins over the saved record.
    """
    env_cookies = os.environ.get("NOTEBOOKLM_COOKIES", "").strip()
    if env_cookies:
        logger.debug("Using cookies from NOTEBOOKLM_COOKIES (%d chars)", len(env_cookies))
        return env_cookies
    return load_cookies()


def fix_cookies(path: Path | None = None) -> tuple[int, int]:
    """Rewrite the saved record with duplicate cookie names removed.

    Keeps the FIRST occurrence of each name. Records written by this package
    are already unique; this repairs records from older tools that merged
    cookies across domains. Runs under AuthLock so a concurrent login is
    never overwritten with the old cookies.

    Returns:
        (pair count before, unique count after)
    """
    path = path or get_cache_path()
    with AuthLock(path.with_name("auth.lock")):
        cookie_string = load_cookies(path)
        deduped, before, after = dedupe_cookie_header(cookie_string, keep="first")
        save_cookies(deduped, path)
    return before, after


class AuthLock:
    """Advisory, non-blocking lock serializing authentication runs.

    Two logins racing to write the same record would lose one of the
    sessions. Acquire raises AuthInProgressError if another process holds it.
    """

    def __init__(self, lock_path: Path | None = None):
        self.lock_path = lock_path or get_cache_path().with_name("auth.lock")
        self._fd = None

    def acquire(self) -> None:
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        self._fd = open(self.lock_path, "a+")
        try:
            if sys.platform == "win32":
                import msvcrt
                self._fd.seek(0)
                msvcrt.locking(self._fd.fileno(), msvcrt.LK_NBLCK, 1)
            else:
                import fcntl
                fcntl.flock(self._fd.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as e:
            self._fd.close()
            self._fd = None
            raise AuthInProgressError(
                "Another authentication run is in progress. Finish or close it and try again."
            ) from e

        self._fd.seek(0)
        self._fd.truncate()
        self._fd.write(f"{os.getpid()} {time.time():.0f}\n")
        self._fd.flush()

    def release(self) -> None:
        if not self._fd:
            return
        try:
            if sys.platform == "win32":
                import msvcrt
                self._fd.seek(0)
                msvcrt.locking(self._fd.fileno(), msvcrt.LK_UNLCK, 1)
            else:
                import fcntl
                fcntl.flock(self._fd.fileno(), fcntl.LOCK_UN)
        finally:
            self._fd.close()
            self._fd = None

    def __enter__(self) -> "AuthLock":
        self.acquire()
        return self

    def __exit__(self, *args) -> None:
        self.release()
