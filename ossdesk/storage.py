from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import BinaryIO, Optional, Protocol, Union

import boto3
import httpx
from botocore.config import Config

from .errors import ProviderError
from .profiles import Profile

log = logging.getLogger(__name__)

DEFAULT_REGION = "oss-cn-hangzhou"
OSS_ENDPOINT_FMT = "https://{region}.aliyuncs.com"

Blob = Union[bytes, str, Path, BinaryIO]


@dataclass(frozen=True)
class ObjectMetadata:
    name: str
    size: int
    last_modified: Optional[datetime]
    storage_class: Optional[str] = None
    etag: Optional[str] = None


@dataclass(frozen=True)
class ProviderResult:
    name: str
    etag: Optional[str] = None
    status: Optional[int] = None
    url: Optional[str] = None


class StorageHandle(Protocol):
    profile: Profile

    def probe_exists(self) -> None: ...

    def list_page(self, prefix: str, max_keys: int) -> list[ObjectMetadata]: ...

    def put(self, path: str, blob: Blob) -> ProviderResult: ...

    def delete(self, path: str) -> ProviderResult: ...

    def sign_url(self, path: str, expires_seconds: int) -> str: ...


class StorageClientFactory(Protocol):
    def __call__(self, profile: Profile) -> StorageHandle: ...


def _status(response: object) -> Optional[int]:
    if not isinstance(response, dict):
        return None
    metadata = response.get("ResponseMetadata")
    if not isinstance(metadata, dict):
        return None
    status = metadata.get("HTTPStatusCode")
    return status if isinstance(status, int) else None


def _strip_etag(value: object) -> Optional[str]:
    if not isinstance(value, str) or not value:
        return None
    return value.strip('"')


class S3Handle:
    def __init__(self, client, profile: Profile) -> None:
        self._client = client
        self.profile = profile

    @property
    def bucket(self) -> str:
        return self.profile.bucket

    def probe_exists(self) -> None:
        self._client.list_objects_v2(Bucket=self.bucket, MaxKeys=1)

    def list_page(self, prefix: str, max_keys: int) -> list[ObjectMetadata]:
        kwargs = {"Bucket": self.bucket, "MaxKeys": max_keys}
        if prefix:
            kwargs["Prefix"] = prefix
        response = self._client.list_objects_v2(**kwargs)
        contents = response.get("Contents", []) if isinstance(response, dict) else []
        items: list[ObjectMetadata] = []
        for entry in contents[:max_keys]:
            if not isinstance(entry, dict):
                continue
            key = entry.get("Key")
            if not isinstance(key, str) or not key:
                continue
            items.append(
                ObjectMetadata(
                    name=key,
                    size=int(entry.get("Size", 0)),
                    last_modified=entry.get("LastModified"),
                    storage_class=entry.get("StorageClass"),
                    etag=_strip_etag(entry.get("ETag")),
                )
            )
        return items

    def put(self, path: str, blob: Blob) -> ProviderResult:
        if isinstance(blob, Path):
            self._client.upload_file(str(blob), self.bucket, path)
            return ProviderResult(name=path)
        body = blob.encode("utf-8") if isinstance(blob, str) else blob
        response = self._client.put_object(Bucket=self.bucket, Key=path, Body=body)
        etag = response.get("ETag") if isinstance(response, dict) else None
        return ProviderResult(
            name=path,
            etag=_strip_etag(etag),
            status=_status(response),
        )

    def delete(self, path: str) -> ProviderResult:
        response = self._client.delete_object(Bucket=self.bucket, Key=path)
        return ProviderResult(name=path, status=_status(response))

    def sign_url(self, path: str, expires_seconds: int) -> str:
        return self._client.generate_presigned_url(
            "get_object",
            Params={"Bucket": self.bucket, "Key": path},
            ExpiresIn=expires_seconds,
        )


def resolve_endpoint(
    profile: Profile, default_region: str = DEFAULT_REGION
) -> tuple[str, Optional[str]]:
    region = profile.region or default_region
    endpoint = profile.endpoint
    if endpoint:
        if "://" not in endpoint:
            endpoint = f"https://{endpoint}"
        return region, endpoint
    if region.startswith("oss-"):
        return region, OSS_ENDPOINT_FMT.format(region=region)
    return region, None


class Boto3ClientFactory:
    def __init__(
        self,
        default_region: str = DEFAULT_REGION,
        config: Optional[Config] = None,
    ) -> None:
        self._default_region = default_region
        self._config = config

    def _client_config(self, endpoint: Optional[str]) -> Optional[Config]:
        if endpoint is None:
            return self._config
        addressing = Config(
            signature_version="s3v4",
            s3={"addressing_style": "virtual"},
        )
        if self._config is None:
            return addressing
        return self._config.merge(addressing)

    def __call__(self, profile: Profile) -> S3Handle:
        region, endpoint = resolve_endpoint(profile, self._default_region)
        session = boto3.session.Session(
            aws_access_key_id=profile.access_key_id,
            aws_secret_access_key=profile.access_key_secret,
        )
        kwargs = {"region_name": region}
        if endpoint:
            kwargs["endpoint_url"] = endpoint
        config = self._client_config(endpoint)
        if config is not None:
            kwargs["config"] = config
        log.debug(
            "Building S3 client for profile %s (region=%s, endpoint=%s)",
            profile.name,
            region,
            endpoint or "default",
        )
        client = session.client("s3", **kwargs)
        return S3Handle(client, profile)


async def fetch_to_file(
    url: str,
    target: Path,
    chunk_size: int = 1024 * 256,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Path:
    target = Path(target)
    target.parent.mkdir(parents=True, exist_ok=True)
    temp_path = target.with_name(f".{target.name}.part")
    try:
        async with httpx.AsyncClient(
            follow_redirects=True, transport=transport
        ) as client:
            async with client.stream("GET", url) as response:
                response.raise_for_status()
                with temp_path.open("wb") as handle:
                    async for chunk in response.aiter_bytes(chunk_size):
                        handle.write(chunk)
    except httpx.HTTPError as exc:
        temp_path.unlink(missing_ok=True)
        raise ProviderError(f"Download to '{target}' failed: {exc}") from exc
    temp_path.replace(target)
    log.info("Downloaded %s", target)
    return target
