"""
The session manager: owns the single live storage handle for the active
profile, serves cached listings against it and routes mutations through the
cache invalidation they require.

Construct one ``SessionManager`` at the composition root and pass it to
whatever needs bucket access; nothing in this package reaches for a global
client.
"""
from __future__ import annotations

import asyncio
import logging
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Iterable, Mapping, Optional, Union

from .cache import CacheKey, ListingCache
from .errors import NotConnectedError, OssDeskError, ProviderError, ValidationError
from .profiles import Profile, ProfileInput, ProfileStore
from .storage import (
    Blob,
    ObjectMetadata,
    ProviderResult,
    StorageClientFactory,
    StorageHandle,
    fetch_to_file,
)

log = logging.getLogger(__name__)

DEFAULT_MAX_KEYS = 100
DEFAULT_URL_EXPIRES_SECONDS = 3600

HandleListener = Callable[[Optional[StorageHandle]], None]
Retriever = Callable[[str, Path], Awaitable[Path]]


class _FetchSlot:
    """Serialises fetches of one listing key; dropped once nobody waits on it."""

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.users = 0


class SessionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"


def _provider_error(action: str, exc: Exception) -> ProviderError:
    return ProviderError(f"{action} failed: {exc}")


class SessionManager:
    def __init__(
        self,
        store: ProfileStore,
        factory: StorageClientFactory,
        cache: Optional[ListingCache] = None,
        retriever: Optional[Retriever] = None,
    ) -> None:
        self._store = store
        self._factory = factory
        self._cache = cache if cache is not None else ListingCache()
        self._retriever = retriever or fetch_to_file
        self._handle: Optional[StorageHandle] = None
        self._state = SessionState.DISCONNECTED
        self._last_error: Optional[str] = None
        self._listeners: list[HandleListener] = []
        self._connect_token = 0
        self._fetch_slots: dict[CacheKey, _FetchSlot] = {}

    @property
    def store(self) -> ProfileStore:
        return self._store

    @property
    def cache(self) -> ListingCache:
        return self._cache

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is SessionState.CONNECTED and self._handle is not None

    @property
    def handle(self) -> Optional[StorageHandle]:
        return self._handle

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    @property
    def active_profile(self) -> Optional[Profile]:
        return self._store.active()

    # observers

    def subscribe(self, listener: HandleListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set_handle(self, handle: Optional[StorageHandle]) -> None:
        if handle is self._handle:
            return
        self._handle = handle
        for listener in list(self._listeners):
            try:
                listener(handle)
            except Exception:
                log.exception("Handle listener %r raised", listener)

    # connection lifecycle

    def _build_and_probe(self, profile: Profile) -> StorageHandle:
        handle = self._factory(profile)
        handle.probe_exists()
        return handle

    def _discard(self) -> int:
        self._connect_token += 1
        self._fetch_slots = {}
        self._set_handle(None)
        self._cache.clear()
        self._last_error = None
        self._state = SessionState.DISCONNECTED
        return self._connect_token

    async def _activate(self, profile: Optional[Profile]) -> SessionState:
        token = self._discard()
        if profile is None:
            log.info("No active profile; session disconnected")
            return self._state
        if not profile.is_complete:
            log.info(
                "Profile %s is missing %s; not connecting",
                profile.name,
                ", ".join(profile.missing_fields()),
            )
            return self._state

        self._state = SessionState.CONNECTING
        log.info("Connecting profile %s to bucket %s", profile.name, profile.bucket)
        try:
            handle = await asyncio.to_thread(self._build_and_probe, profile)
        except Exception as exc:
            if token != self._connect_token:
                log.info(
                    "Superseded connection attempt for %s failed: %s", profile.name, exc
                )
                return self._state
            self._state = SessionState.FAILED
            self._last_error = f"Connection to bucket '{profile.bucket}' failed: {exc}"
            log.warning(self._last_error)
            raise ProviderError(self._last_error) from exc

        if token != self._connect_token:
            log.debug("Discarding superseded handle for profile %s", profile.name)
            return self._state
        self._state = SessionState.CONNECTED
        self._set_handle(handle)
        log.info("Connected profile %s", profile.name)
        return self._state

    async def connect(self) -> SessionState:
        """(Re)connect whatever profile is currently active."""
        return await self._activate(self._store.active())

    async def switch_active(self, profile_id: str) -> SessionState:
        profile = self._store.get(profile_id)
        if profile is None:
            raise ValidationError(f"No profile with id '{profile_id}'")
        if profile_id == self._store.active_id and self.is_connected:
            return self._state
        self._store.set_active(profile_id)
        return await self._activate(profile)

    async def reconfigure_active(
        self, profile_id: str, fields: ProfileInput
    ) -> SessionState:
        self._store.update(profile_id, fields)
        if profile_id != self._store.active_id:
            return self._state
        return await self._activate(self._store.get(profile_id))

    async def delete_profile(self, profile_id: str) -> SessionState:
        was_active = profile_id == self._store.active_id
        self._store.remove(profile_id)
        if not was_active:
            return self._state
        return await self._activate(self._store.active())

    async def add_profile(self, partial: ProfileInput, connect: bool = True) -> str:
        profile_id = self._store.add(partial)
        if connect:
            await self._activate(self._store.get(profile_id))
        else:
            self._discard()
        return profile_id

    async def save_profile(self, fields: ProfileInput) -> str:
        active_id = self._store.active_id
        if active_id is None:
            return await self.add_profile(fields)
        await self.reconfigure_active(active_id, fields)
        return active_id

    async def import_profiles(
        self,
        profiles: Iterable[Union[Profile, Mapping[str, object]]],
        preferred_active_original_id: Optional[str] = None,
    ) -> SessionState:
        self._store.import_batch(profiles, preferred_active_original_id)
        return await self._activate(self._store.active())

    async def clear_profiles(self) -> SessionState:
        self._store.clear()
        return await self._activate(None)

    def clear_listing_cache(self) -> None:
        self._cache.clear()

    # bucket operations

    def _require_handle(self) -> StorageHandle:
        handle = self._handle
        if self._state is not SessionState.CONNECTED or handle is None:
            raise NotConnectedError(
                f"Storage client is not connected (state: {self._state.value})"
            )
        return handle

    async def list(
        self,
        prefix: str = "",
        max_keys: int = DEFAULT_MAX_KEYS,
        allow_cache: bool = True,
    ) -> list[ObjectMetadata]:
        self._require_handle()
        key: CacheKey = (prefix, max_keys)
        if allow_cache:
            entry = self._cache.get(key)
            if entry is not None:
                log.debug("Listing %r served from cache", key)
                return list(entry.items)

        slot = self._fetch_slots.get(key)
        if slot is None:
            slot = self._fetch_slots[key] = _FetchSlot()
        slot.users += 1
        try:
            async with slot.lock:
                return await self._fetch_listing(key, allow_cache)
        finally:
            slot.users -= 1
            if not slot.users and self._fetch_slots.get(key) is slot:
                del self._fetch_slots[key]

    async def _fetch_listing(
        self, key: CacheKey, allow_cache: bool
    ) -> list[ObjectMetadata]:
        handle = self._require_handle()
        if allow_cache:
            entry = self._cache.fresh(key)
            if entry is not None:
                return list(entry.items)
        prefix, max_keys = key
        generation = self._cache.generation
        started = self._cache.now()
        log.debug("Fetching listing %r from provider", key)
        try:
            items = await asyncio.to_thread(handle.list_page, prefix, max_keys)
        except OssDeskError:
            raise
        except Exception as exc:
            raise _provider_error(f"Listing '{prefix or '/'}'", exc) from exc
        if generation == self._cache.generation and handle is self._handle:
            self._cache.put(key, items, fetched_at=started)
        else:
            log.debug("Listing %r finished after invalidation; not cached", key)
        return list(items)

    async def upload(self, blob: Blob, destination_path: str) -> ProviderResult:
        handle = self._require_handle()
        try:
            result = await asyncio.to_thread(handle.put, destination_path, blob)
        except OssDeskError:
            raise
        except Exception as exc:
            raise _provider_error(f"Upload of '{destination_path}'", exc) from exc
        self._cache.clear()
        log.info("Uploaded %s", destination_path)
        return result

    async def delete(self, path: str) -> ProviderResult:
        handle = self._require_handle()
        try:
            result = await asyncio.to_thread(handle.delete, path)
        except OssDeskError:
            raise
        except Exception as exc:
            raise _provider_error(f"Delete of '{path}'", exc) from exc
        self._cache.clear()
        log.info("Deleted %s", path)
        return result

    def get_signed_url(
        self, path: str, expires_seconds: int = DEFAULT_URL_EXPIRES_SECONDS
    ) -> str:
        handle = self._require_handle()
        try:
            return handle.sign_url(path, expires_seconds)
        except OssDeskError:
            raise
        except Exception as exc:
            raise _provider_error(f"Signing URL for '{path}'", exc) from exc

    async def download(
        self,
        path: str,
        suggested_name: Optional[str] = None,
        destination: Optional[Path] = None,
    ) -> Path:
        url = self.get_signed_url(path)
        name = suggested_name or path.rstrip("/").rsplit("/", 1)[-1] or "download"
        target = Path(destination or Path.cwd()) / name
        return await self._retriever(url, target)
