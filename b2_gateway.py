"""Backblaze B2 access: credentials file, authorized session, upload/delete.

The gateway owns a single :class:`B2Session`. Any call made without a
session, after its 23 hour validity window, or with ``force_refresh``
re-authorizes first. Reconfiguring the gateway drops the session.
"""

import json
import logging
import os
import threading
import time
from dataclasses import asdict, dataclass, fields
from typing import Any, Callable, Optional
from urllib.parse import urlparse

from b2sdk.v2 import B2Api, InMemoryAccountInfo
from b2sdk.v2.exception import B2Error, Unauthorized

logger = logging.getLogger(__name__)

AUTH_TTL = 23 * 60 * 60
REALM = "production"
DEFAULT_DOWNLOAD_HOST = "f003.backblazeb2.com"


class StorageConfigError(RuntimeError):
    """B2 is not configured, or the configured bucket can't be resolved."""


@dataclass
class B2Config:
    application_key_id: str = ""
    application_key: str = ""
    bucket_name: str = ""
    bucket_id: str = ""
    use_cdn: bool = False
    cdn_domain: str = ""

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "B2Config":
        data = data or {}
        known = {f.name for f in fields(cls)}
        cfg = cls(**{k: v for k, v in data.items() if k in known and v is not None})
        cfg.use_cdn = cfg.use_cdn is True or str(cfg.use_cdn).lower() in ("true", "on", "1")
        return cfg

    def to_dict(self) -> dict:
        return asdict(self)

    @property
    def has_credentials(self) -> bool:
        return bool(self.application_key_id and self.application_key)

    @property
    def is_configured(self) -> bool:
        return self.has_credentials and bool(self.bucket_name)


def load_b2_config(path: str) -> B2Config:
    if not os.path.isfile(path):
        return B2Config()
    try:
        with open(path, "r", encoding="utf-8") as f:
            return B2Config.from_dict(json.load(f))
    except (OSError, ValueError) as e:
        logger.error("Error loading %s: %s", os.path.basename(path), e)
        return B2Config()


def save_b2_config(path: str, config: B2Config) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(config.to_dict(), f, indent=2)


def key_from_url(url: str, depth: int) -> str:
    """Return the last ``depth`` path segments of a public URL."""
    parts = [p for p in urlparse(url).path.split("/") if p]
    return "/".join(parts[-depth:])


def _default_api() -> B2Api:
    return B2Api(InMemoryAccountInfo())


@dataclass
class B2Session:
    api: Any
    bucket: Any
    expires_at: float

    def expired(self, now: float) -> bool:
        return now > self.expires_at


class B2Gateway:
    def __init__(self, config: Optional[B2Config] = None,
                 api_factory: Callable[[], Any] = _default_api,
                 clock: Callable[[], float] = time.time):
        self.config = config or B2Config()
        self.session: Optional[B2Session] = None
        self._api_factory = api_factory
        self._clock = clock
        self._lock = threading.Lock()

    def configure(self, config: B2Config) -> None:
        with self._lock:
            self.config = config
            self.session = None
        if config.has_credentials:
            logger.info("B2 initialized with config.")
        else:
            logger.info("B2 not initialized: Missing configuration.")

    def authorize(self, force_refresh: bool = False) -> B2Session:
        if not self.config.has_credentials:
            raise StorageConfigError(
                "Backblaze B2 is not configured. Please go to Settings and provide your credentials."
            )
        with self._lock:
            now = self._clock()
            if self.session is not None and not force_refresh and not self.session.expired(now):
                return self.session
            logger.info("Authorizing B2...")
            api = self._api_factory()
            try:
                api.authorize_account(REALM, self.config.application_key_id, self.config.application_key)
            except Unauthorized as e:
                raise StorageConfigError(f"B2 authorization failed: {e}") from e
            bucket = self._resolve_bucket(api)
            self.session = B2Session(api=api, bucket=bucket, expires_at=now + AUTH_TTL)
            return self.session

    def _resolve_bucket(self, api):
        if self.config.bucket_id:
            logger.info("B2 authorized. Using bucket ID from config: %s", self.config.bucket_id)
            return api.BUCKET_CLASS(api, self.config.bucket_id, name=self.config.bucket_name)
        try:
            bucket = api.get_bucket_by_name(self.config.bucket_name)
        except B2Error as e:
            logger.error('Cannot list buckets. Please add "bucket_id" to .b2-config.json')
            raise StorageConfigError("bucket_id required in config when using limited app key") from e
        logger.info("B2 authorized. Bucket ID: %s", bucket.id_)
        return bucket

    def upload(self, key: str, data: bytes, content_type: str):
        session = self.authorize()
        return session.bucket.upload_bytes(data, key, content_type=content_type)

    def delete(self, key: str) -> bool:
        """Delete the newest version stored under ``key``; False if none."""
        session = self.authorize()
        versions = session.bucket.list_file_versions(key, fetch_count=1)
        latest = next(iter(versions), None)
        if latest is None:
            return False
        session.bucket.delete_file_version(latest.id_, latest.file_name)
        return True

    def public_url(self, key: str) -> str:
        if self.config.use_cdn and self.config.cdn_domain:
            return f"https://{self.config.cdn_domain}/{key}"
        return f"https://{DEFAULT_DOWNLOAD_HOST}/file/{self.config.bucket_name}/{key}"
