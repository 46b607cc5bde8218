"""Named connection profiles persisted with encrypted credentials."""
from __future__ import annotations

import json
import logging
import secrets
import string
import time
from dataclasses import asdict, dataclass, replace
from typing import Iterable, Mapping, Optional, Union

from .crypto import CredentialCodec
from .errors import ValidationError
from .kvstore import KeyValueStore

log = logging.getLogger(__name__)

PROFILES_KEY = "ossConfigs"
ACTIVE_KEY = "currentOssConfigId"

PROFILE_FIELDS = (
    "name",
    "region",
    "access_key_id",
    "access_key_secret",
    "bucket",
    "endpoint",
)
REQUIRED_FIELDS = ("access_key_id", "access_key_secret", "bucket")

# persisted records use camelCase keys
_RECORD_KEYS = {
    "name": "name",
    "region": "region",
    "access_key_id": "accessKeyId",
    "access_key_secret": "accessKeySecret",
    "bucket": "bucket",
    "endpoint": "endpoint",
}
_FIELD_ALIASES = {value: key for key, value in _RECORD_KEYS.items()}
_FIELD_ALIASES.update({key: key for key in _RECORD_KEYS})

_BASE36 = string.digits + string.ascii_lowercase


@dataclass(frozen=True)
class Profile:
    id: str
    name: str
    region: str = ""
    access_key_id: str = ""
    access_key_secret: str = ""
    bucket: str = ""
    endpoint: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return all(getattr(self, field) for field in REQUIRED_FIELDS)

    def missing_fields(self) -> list[str]:
        return [field for field in REQUIRED_FIELDS if not getattr(self, field)]

    def with_fields(self, partial: Mapping[str, object]) -> "Profile":
        return replace(self, **normalize_input(partial))

    def to_dict(self) -> dict[str, object]:
        return asdict(self)


ProfileInput = Mapping[str, object]


def normalize_input(partial: ProfileInput) -> dict[str, Optional[str]]:
    """Map snake_case or camelCase field names onto profile fields.

    Unknown keys (including ``id``) are dropped.
    """
    normalized: dict[str, Optional[str]] = {}
    for key, value in partial.items():
        field = _FIELD_ALIASES.get(key)
        if field is None:
            continue
        if value is None:
            normalized[field] = None if field == "endpoint" else ""
            continue
        if not isinstance(value, str):
            raise ValidationError(f"Profile field '{field}' must be a string")
        value = value.strip()
        if field == "endpoint" and not value:
            normalized[field] = None
            continue
        normalized[field] = value
    return normalized


def _base36(value: int) -> str:
    if value == 0:
        return "0"
    digits: list[str] = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_profile_id() -> str:
    return _base36(int(time.time() * 1000)) + _base36(secrets.randbits(52))


class ProfileStore:
    def __init__(
        self, kv: KeyValueStore, codec: Optional[CredentialCodec] = None
    ) -> None:
        self._kv = kv
        self._codec = codec or CredentialCodec()

    # persisted state

    def _read_records(self) -> list[dict[str, object]]:
        raw = self._kv.get(PROFILES_KEY)
        if not raw:
            return []
        try:
            payload = json.loads(raw)
        except ValueError as exc:
            log.warning("Stored profiles are not valid JSON, ignoring them: %s", exc)
            return []
        if not isinstance(payload, list):
            return []
        records: list[dict[str, object]] = []
        seen: set[str] = set()
        for item in payload:
            if not isinstance(item, dict):
                continue
            record_id = item.get("id")
            if not isinstance(record_id, str) or not record_id or record_id in seen:
                continue
            seen.add(record_id)
            records.append(item)
        return records

    def _read_active(self, records: list[dict[str, object]]) -> Optional[str]:
        stored = self._kv.get(ACTIVE_KEY)
        if stored and any(record["id"] == stored for record in records):
            return stored
        if records:
            return str(records[0]["id"])
        return None

    def _write(
        self, records: list[dict[str, object]], active_id: Optional[str]
    ) -> None:
        self._kv.set(PROFILES_KEY, json.dumps(records))
        if active_id:
            self._kv.set(ACTIVE_KEY, active_id)
        else:
            self._kv.remove(ACTIVE_KEY)

    def _record_from_fields(
        self, record_id: str, fields: Mapping[str, Optional[str]]
    ) -> dict[str, object]:
        encrypted = self._codec.encrypt_profile_secrets(fields)
        record: dict[str, object] = {"id": record_id}
        for field in PROFILE_FIELDS:
            if field in encrypted:
                record[_RECORD_KEYS[field]] = encrypted[field]
        return record

    def _merge_record(
        self, record: dict[str, object], fields: Mapping[str, Optional[str]]
    ) -> dict[str, object]:
        merged = dict(record)
        encrypted = self._codec.encrypt_profile_secrets(fields)
        for field in fields:
            merged[_RECORD_KEYS[field]] = encrypted[field]
        return merged

    def _profile_from_record(self, record: Mapping[str, object]) -> Profile:
        fields: dict[str, object] = {}
        for field, key in _RECORD_KEYS.items():
            value = record.get(key)
            fields[field] = value if isinstance(value, str) else ""
        fields = self._codec.decrypt_profile_secrets(
            fields, label=str(record.get("name") or record["id"])
        )
        endpoint = fields.get("endpoint") or None
        return Profile(
            id=str(record["id"]),
            name=str(fields["name"]),
            region=str(fields["region"]),
            access_key_id=str(fields["access_key_id"]),
            access_key_secret=str(fields["access_key_secret"]),
            bucket=str(fields["bucket"]),
            endpoint=str(endpoint) if endpoint else None,
        )

    def _fresh_id(self, taken: Iterable[str]) -> str:
        taken = set(taken)
        while True:
            candidate = generate_profile_id()
            if candidate not in taken:
                return candidate

    # queries

    def list(self) -> list[Profile]:
        return [self._profile_from_record(record) for record in self._read_records()]

    def get(self, profile_id: Optional[str]) -> Optional[Profile]:
        if not profile_id:
            return None
        for record in self._read_records():
            if record["id"] == profile_id:
                return self._profile_from_record(record)
        return None

    @property
    def active_id(self) -> Optional[str]:
        return self._read_active(self._read_records())

    def active(self) -> Optional[Profile]:
        return self.get(self.active_id)

    def __len__(self) -> int:
        return len(self._read_records())

    # mutations

    def add(self, partial: ProfileInput) -> str:
        records = self._read_records()
        fields = normalize_input(partial)
        if not fields.get("name"):
            fields["name"] = f"Profile {len(records) + 1}"
        profile_id = self._fresh_id(record["id"] for record in records)
        records.append(self._record_from_fields(profile_id, fields))
        self._write(records, profile_id)
        log.info("Added profile %s (%s)", fields["name"], profile_id)
        return profile_id

    def update(self, profile_id: str, partial: ProfileInput) -> None:
        records = self._read_records()
        fields = normalize_input(partial)
        for index, record in enumerate(records):
            if record["id"] == profile_id:
                records[index] = self._merge_record(record, fields)
                break
        else:
            log.debug("Ignoring update for unknown profile %s", profile_id)
            return
        self._write(records, self._read_active(records))
        log.info("Updated profile %s (%s)", profile_id, ", ".join(sorted(fields)))

    def remove(self, profile_id: str) -> None:
        records = self._read_records()
        active_id = self._read_active(records)
        remaining = [record for record in records if record["id"] != profile_id]
        if len(remaining) == len(records):
            return
        if active_id == profile_id:
            active_id = str(remaining[0]["id"]) if remaining else None
        self._write(remaining, active_id)
        log.info("Removed profile %s; active is now %s", profile_id, active_id)

    def set_active(self, profile_id: str) -> None:
        records = self._read_records()
        if not any(record["id"] == profile_id for record in records):
            raise ValidationError(f"No profile with id '{profile_id}'")
        self._write(records, profile_id)

    def import_batch(
        self,
        profiles: Iterable[Union[Profile, ProfileInput]],
        preferred_active_original_id: Optional[str] = None,
    ) -> None:
        incoming = [
            item.to_dict() if isinstance(item, Profile) else dict(item)
            for item in profiles
        ]
        records: list[dict[str, object]] = []
        active_id: Optional[str] = None
        for item in incoming:
            new_id = self._fresh_id(record["id"] for record in records)
            records.append(self._record_from_fields(new_id, normalize_input(item)))
            original_id = item.get("id")
            if (
                active_id is None
                and preferred_active_original_id
                and original_id == preferred_active_original_id
            ):
                active_id = new_id
        if active_id is None and records:
            active_id = str(records[0]["id"])
        self._write(records, active_id)
        log.info("Imported %d profiles; active is %s", len(records), active_id)

    def clear(self) -> None:
        self._kv.remove(PROFILES_KEY)
        self._kv.remove(ACTIVE_KEY)
        log.info("Cleared all profiles")

    def export(self) -> dict[str, object]:
        records = self._read_records()
        return {
            "profiles": [self._profile_from_record(record).to_dict() for record in records],
            "active_id": self._read_active(records),
        }
