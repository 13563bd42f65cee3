"""
Blob storage abstraction. S3 OR local filesystem. Controlled by FF_USE_S3 flag.

Objects are addressed by key. Keys are write-once: `put` never overwrites,
so a fingerprint computed from stored bytes stays valid for the key's lifetime.
"""

import asyncio
import logging
import mimetypes
import uuid
from abc import ABC, abstractmethod
from pathlib import Path, PurePosixPath

from .config import get_settings
from .errors import ConfigurationError, StorageError, ValidationError
from .flags import get_flags

logger = logging.getLogger(__name__)

# Office types missing from some platform MIME tables
mimetypes.add_type("application/vnd.openxmlformats-officedocument.wordprocessingml.document", ".docx")
mimetypes.add_type("application/vnd.openxmlformats-officedocument.spreadsheetml.sheet", ".xlsx")


class StorageBackend(ABC):
    @abstractmethod
    async def put(self, key: str, data: bytes, content_type: str = "") -> None:
        """Store bytes under a new key. Raises StorageError if the key exists."""
        ...

    @abstractmethod
    async def get(self, key: str) -> bytes:
        """Read the bytes stored under key. Raises StorageError if unreadable."""
        ...

    @abstractmethod
    async def exists(self, key: str) -> bool:
        ...

    @abstractmethod
    async def get_url(self, key: str) -> str:
        """Get a URL any holder can use to retrieve the object."""
        ...


class S3Storage(StorageBackend):
    def __init__(self, bucket: str = "", client=None):
        settings = get_settings()
        self.bucket = bucket or settings.s3_bucket_name
        if not self.bucket:
            raise ConfigurationError("S3_BUCKET_NAME is not configured")
        self._client = client

    def _get_client(self):
        if self._client is None:
            import boto3

            settings = get_settings()
            kwargs = {"region_name": settings.aws_region}
            if settings.aws_access_key_id:
                kwargs["aws_access_key_id"] = settings.aws_access_key_id
                kwargs["aws_secret_access_key"] = settings.aws_secret_access_key
            self._client = boto3.client("s3", **kwargs)
        return self._client

    async def put(self, key: str, data: bytes, content_type: str = "") -> None:
        from botocore.exceptions import BotoCoreError, ClientError

        key = normalize_key(key)
        client = self._get_client()
        try:
            await asyncio.to_thread(
                client.put_object,
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type or guess_content_type(key),
                IfNoneMatch="*",
            )
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if code in ("PreconditionFailed", "ConditionalRequestConflict"):
                raise StorageError(f"Storage key already exists: {key}", {"key": key})
            raise StorageError(f"S3 upload failed: {code or e}", {"key": key})
        except BotoCoreError as e:
            raise StorageError(f"S3 upload failed: {e}", {"key": key})

        logger.info("Uploaded to S3: %s (%d bytes)", key, len(data))

    async def get(self, key: str) -> bytes:
        from botocore.exceptions import BotoCoreError, ClientError

        key = normalize_key(key)
        client = self._get_client()
        try:
            resp = await asyncio.to_thread(client.get_object, Bucket=self.bucket, Key=key)
            return await asyncio.to_thread(resp["Body"].read)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            raise StorageError(f"S3 read failed: {code or e}", {"key": key})
        except BotoCoreError as e:
            raise StorageError(f"S3 read failed: {e}", {"key": key})

    async def exists(self, key: str) -> bool:
        from botocore.exceptions import ClientError

        client = self._get_client()
        try:
            await asyncio.to_thread(client.head_object, Bucket=self.bucket, Key=normalize_key(key))
            return True
        except ClientError:
            return False

    async def get_url(self, key: str) -> str:
        settings = get_settings()
        client = self._get_client()
        return await asyncio.to_thread(
            client.generate_presigned_url,
            "get_object",
            Params={"Bucket": self.bucket, "Key": normalize_key(key)},
            ExpiresIn=settings.s3_url_expiry_seconds,
        )


class LocalStorage(StorageBackend):
    def __init__(self, base_path: str = "", public_base_url: str = ""):
        settings = get_settings()
        self.base_path = Path(base_path or settings.local_storage_path)
        self.public_base_url = (public_base_url or settings.public_base_url).rstrip("/")

    def path_for(self, key: str) -> Path:
        return self.base_path / normalize_key(key)

    async def put(self, key: str, data: bytes, content_type: str = "") -> None:
        path = self.path_for(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            # "xb" fails instead of truncating an existing object
            with open(path, "xb") as fh:
                fh.write(data)
        except FileExistsError:
            raise StorageError(f"Storage key already exists: {key}", {"key": key})
        except OSError as e:
            raise StorageError(f"Local write failed: {e}", {"key": key})

        logger.info("Saved locally: %s (%d bytes)", path, len(data))

    async def get(self, key: str) -> bytes:
        path = self.path_for(key)
        try:
            return path.read_bytes()
        except OSError as e:
            raise StorageError(f"Local read failed: {e}", {"key": key})

    async def exists(self, key: str) -> bool:
        return self.path_for(key).is_file()

    async def get_url(self, key: str) -> str:
        return f"{self.public_base_url}/v1/storage/{normalize_key(key)}"


def get_storage() -> StorageBackend:
    """Return the active storage backend based on feature flags."""
    flags = get_flags()
    if flags.use_s3:
        return S3Storage()
    return LocalStorage()


def normalize_key(key: str) -> str:
    """Reject keys that would escape the storage root."""
    parts = PurePosixPath(key.strip().strip("/")).parts
    if not parts or any(p in ("..", ".") for p in parts):
        raise ValidationError(f"Invalid storage key: {key!r}")
    return "/".join(parts)


def build_upload_key(user_id: str, filename: str) -> str:
    """Key for an original upload: uploads/{user_id}/{unique}{ext}."""
    ext = Path(filename).suffix.lower()
    unique = f"{uuid.uuid4().hex[:12]}{ext}"
    return f"uploads/{user_id}/{unique}"


def guess_content_type(filename: str) -> str:
    ct, _ = mimetypes.guess_type(filename)
    return ct or "application/octet-stream"
