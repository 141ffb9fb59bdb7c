"""
Object Storage

Filesystem-backed buckets addressed by (bucket, path), with:
- Path traversal prevention for every object key
- Time-boxed signed read URLs (JWT, HS256)
- Public URLs for buckets served without a token
- Async uploads with overwrite semantics

Layout on disk:
    <storage_path>/<bucket>/<object path>
"""

import logging
import os
import re
import uuid
from datetime import datetime, timedelta
from functools import lru_cache
from pathlib import Path
from typing import Iterable, Optional, Protocol
from urllib.parse import quote

import aiofiles
from jose import JWTError, jwt

from .config import get_settings

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"

# Bucket names follow the usual object-store rules
BUCKET_NAME_PATTERN = re.compile(r"^[a-z0-9][a-z0-9._-]{1,62}$")

UPLOAD_CHUNK_SIZE = 1024 * 1024


class StorageError(Exception):
    """Raised when an object cannot be read or written."""


class ObjectStorage(Protocol):
    def create_signed_url(self, bucket: str, path: str, expires_in: int) -> str:
        ...

    def public_url(self, bucket: str, path: str) -> str:
        ...

    async def upload(
        self, bucket: str, path: str, local_file: str, content_type: str
    ) -> None:
        ...

    def open_path(self, bucket: str, path: str) -> Path:
        ...


def validate_object_key(path: str) -> str:
    """
    Validate and normalize an object key.

    Args:
        path: Object key inside a bucket (forward slashes)

    Returns:
        str: Normalized key without leading slashes

    Raises:
        ValueError: If the key is empty or contains traversal components

    Example:
        >>> validate_object_key("/users/u1/intro/a.png")
        'users/u1/intro/a.png'
        >>> validate_object_key("users/../etc/passwd")
        Traceback (most recent call last):
        ValueError: Invalid object key
    """
    key = str(path).replace("\\", "/").lstrip("/")
    if not key or "\x00" in key:
        raise ValueError("Invalid object key")

    parts = key.split("/")
    if any(part in ("", ".", "..") for part in parts):
        raise ValueError("Invalid object key")

    return key


class LocalObjectStorage:
    """Object storage on the local filesystem."""

    def __init__(
        self,
        root: str,
        public_base_url: str,
        secret_key: str,
        public_buckets: Iterable[str] = (),
    ):
        self.root = Path(root).resolve()
        self.public_base_url = public_base_url.rstrip("/")
        self._secret_key = secret_key
        self.public_buckets = frozenset(public_buckets)

    def resolve(self, bucket: str, path: str) -> Path:
        """
        Map (bucket, path) to an absolute filesystem path under the root.

        Raises:
            ValueError: If the bucket name or key is invalid or escapes the root
        """
        if not BUCKET_NAME_PATTERN.match(bucket or ""):
            raise ValueError("Invalid bucket name")

        key = validate_object_key(path)
        bucket_root = (self.root / bucket).resolve()
        resolved = (bucket_root / key).resolve()

        if not str(resolved).startswith(str(bucket_root) + os.sep):
            raise ValueError("Path traversal detected: path escapes bucket root")

        return resolved

    def _object_url(self, bucket: str, path: str) -> str:
        key = validate_object_key(path)
        return f"{self.public_base_url}/storage/{bucket}/{quote(key)}"

    def create_signed_url(self, bucket: str, path: str, expires_in: int) -> str:
        """
        Create a time-boxed read URL for an object.

        Args:
            bucket: Bucket name
            path: Object key
            expires_in: Lifetime of the URL in seconds

        Returns:
            str: URL carrying a signed token bound to bucket and key

        Raises:
            StorageError: If the object does not exist
        """
        if not self.resolve(bucket, path).is_file():
            raise StorageError(f"Object not found: {bucket}/{path}")

        now = datetime.utcnow()
        claims = {
            "bucket": bucket,
            "path": validate_object_key(path),
            "iat": now,
            "exp": now + timedelta(seconds=expires_in),
        }
        token = jwt.encode(claims, self._secret_key, algorithm=ALGORITHM)
        return f"{self._object_url(bucket, path)}?token={token}"

    def verify_signed_token(self, bucket: str, path: str, token: Optional[str]) -> bool:
        """Check that token is unexpired and was issued for this exact object."""
        if not token:
            return False
        try:
            claims = jwt.decode(token, self._secret_key, algorithms=[ALGORITHM])
            key = validate_object_key(path)
        except (JWTError, ValueError):
            return False
        return claims.get("bucket") == bucket and claims.get("path") == key

    def public_url(self, bucket: str, path: str) -> str:
        """URL of an object in a bucket that is readable without a token."""
        return self._object_url(bucket, path)

    def is_public(self, bucket: str) -> bool:
        return bucket in self.public_buckets

    async def upload(
        self, bucket: str, path: str, local_file: str, content_type: str
    ) -> None:
        """
        Copy a local file into the bucket, replacing any existing object.

        The object is written to a temporary sibling first and renamed into
        place, so readers never observe a partial write.

        Raises:
            StorageError: If the source cannot be read or the object written
        """
        try:
            target = self.resolve(bucket, path)
        except ValueError as e:
            raise StorageError(str(e)) from e

        tmp_path = target.with_name(f".{target.name}.{uuid.uuid4().hex}.part")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(local_file, "rb") as src:
                async with aiofiles.open(tmp_path, "wb") as dst:
                    while True:
                        chunk = await src.read(UPLOAD_CHUNK_SIZE)
                        if not chunk:
                            break
                        await dst.write(chunk)
            os.replace(tmp_path, target)
        except OSError as e:
            if tmp_path.exists():
                tmp_path.unlink()
            raise StorageError(f"Upload failed for {bucket}/{path}: {e}") from e

        logger.info(f"Stored {bucket}/{path} ({content_type})")

    def open_path(self, bucket: str, path: str) -> Path:
        """
        Local path of an existing object.

        Raises:
            FileNotFoundError: If the object does not exist
            ValueError: If the bucket or key is invalid
        """
        resolved = self.resolve(bucket, path)
        if not resolved.is_file():
            raise FileNotFoundError(f"{bucket}/{path}")
        return resolved


@lru_cache()
def get_storage() -> LocalObjectStorage:
    """Process-wide storage adapter built from settings."""
    settings = get_settings()
    return LocalObjectStorage(
        root=settings.storage_path,
        public_base_url=settings.storage_public_base_url,
        secret_key=settings.secret_key,
        public_buckets=settings.public_buckets_list,
    )
