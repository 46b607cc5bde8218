"""
The login gate in front of the browser.

Users come from a static allow-list file whose passwords are stored through
the credential codec. A successful login is remembered in the key-value store
for ``session_hours``; expiry is only checked when ``restore()`` runs at start.
"""
from __future__ import annotations

import json
import logging
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Callable, Iterable, Optional

from .crypto import CredentialCodec
from .errors import ConfigurationError, DecryptionError
from .kvstore import KeyValueStore

log = logging.getLogger(__name__)

CURRENT_USER_KEY = "currentUser"
LOGIN_TIME_KEY = "loginTime"
DEFAULT_SESSION_HOURS = 24
INVALID_LOGIN_MESSAGE = "Invalid username or password"


@dataclass(frozen=True)
class UserRecord:
    id: str
    username: str
    name: str
    role: str
    password: str


@dataclass(frozen=True)
class CurrentUser:
    id: str
    username: str
    name: str
    role: str


@dataclass(frozen=True)
class LoginResult:
    success: bool
    message: Optional[str] = None
    user: Optional[CurrentUser] = None


def _read_user_file(path: Path) -> list[dict]:
    try:
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
    except FileNotFoundError:
        return []
    except (OSError, ValueError) as exc:
        raise ConfigurationError(f"Cannot read user file {path}: {exc}") from exc
    if not isinstance(payload, list):
        raise ConfigurationError(f"User file {path} must contain a JSON list")
    return [item for item in payload if isinstance(item, dict)]


def load_users(path: Path) -> list[UserRecord]:
    users: list[UserRecord] = []
    for item in _read_user_file(path):
        username = item.get("username")
        password = item.get("password")
        if not isinstance(username, str) or not username:
            continue
        if not isinstance(password, str) or not password:
            continue
        users.append(
            UserRecord(
                id=str(item.get("id", username)),
                username=username,
                name=str(item.get("name") or username),
                role=str(item.get("role") or "user"),
                password=password,
            )
        )
    return users


def encrypt_user_file(path: Path, codec: Optional[CredentialCodec] = None) -> int:
    """Encrypt every plaintext password in a user file in place.

    Passwords that already decrypt under the codec are left alone, so running
    this twice is harmless. Returns the number of passwords encrypted.
    """
    codec = codec or CredentialCodec()
    path = Path(path)
    items = _read_user_file(path)
    changed = 0
    for item in items:
        password = item.get("password")
        if not isinstance(password, str) or not password:
            continue
        try:
            codec.decrypt(password)
            continue
        except DecryptionError:
            pass
        item["password"] = codec.encrypt(password)
        changed += 1
        log.info("Encrypted password for user %s", item.get("username", "?"))
    if changed:
        temp_path = path.with_suffix(".tmp")
        temp_path.write_text(
            json.dumps(items, indent=2, ensure_ascii=False), encoding="utf-8"
        )
        temp_path.replace(path)
    return changed


class LoginGate:
    def __init__(
        self,
        users: Iterable[UserRecord],
        kv: KeyValueStore,
        codec: Optional[CredentialCodec] = None,
        session_hours: int = DEFAULT_SESSION_HOURS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._users = list(users)
        self._kv = kv
        self._codec = codec or CredentialCodec()
        self._session_ms = int(session_hours * 3600 * 1000)
        self._clock = clock
        self._current: Optional[CurrentUser] = None

    @property
    def is_authenticated(self) -> bool:
        return self._current is not None

    @property
    def current_user(self) -> Optional[CurrentUser]:
        return self._current

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _forget(self) -> None:
        self._kv.remove(CURRENT_USER_KEY)
        self._kv.remove(LOGIN_TIME_KEY)

    def restore(self) -> Optional[CurrentUser]:
        saved_user = self._kv.get(CURRENT_USER_KEY)
        login_time = self._kv.get(LOGIN_TIME_KEY)
        if not saved_user or not login_time:
            return None
        try:
            login_ms = int(login_time)
            user = CurrentUser(**json.loads(saved_user))
        except (ValueError, TypeError) as exc:
            log.warning("Discarding unreadable saved login: %s", exc)
            self._forget()
            return None
        if self._now_ms() - login_ms >= self._session_ms:
            log.info("Saved login for %s has expired", user.username)
            self._forget()
            return None
        self._current = user
        return user

    def login(self, username: str, password: str) -> LoginResult:
        for record in self._users:
            if record.username != username:
                continue
            if not self._codec.verify(password, record.password):
                continue
            user = CurrentUser(
                id=record.id,
                username=record.username,
                name=record.name,
                role=record.role,
            )
            self._kv.set(CURRENT_USER_KEY, json.dumps(asdict(user)))
            self._kv.set(LOGIN_TIME_KEY, str(self._now_ms()))
            self._current = user
            log.info("User %s logged in", username)
            return LoginResult(success=True, user=user)
        log.info("Rejected login for %s", username)
        return LoginResult(success=False, message=INVALID_LOGIN_MESSAGE)

    def logout(self) -> None:
        if self._current is not None:
            log.info("User %s logged out", self._current.username)
        self._current = None
        self._forget()
