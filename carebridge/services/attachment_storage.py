"""
Attachment storage for assistance requests

Files go to Cloudflare R2 through its S3-compatible API. Only the returned
(filename, path, size) triplet is kept in the database.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from .. import config

logger = logging.getLogger(__name__)

# Presigned URL expiration time (1 hour)
PRESIGNED_URL_EXPIRATION = 3600

ALLOWED_IMAGE_TYPES = [
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/webp",
    "image/gif",
    "image/bmp",
]
ALLOWED_IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".webp", ".gif", ".bmp")
DANGEROUS_FILENAME_CHARS = ["..", "/", "\\", "<", ">", ":", '"', "|", "?", "*"]


class StorageError(Exception):
    """Raised when the storage backend rejects an upload"""


@dataclass
class StoredFile:
    filename: str
    path: str
    size: int


class AttachmentStorage:
    """Collaborator boundary for file uploads"""

    def store(self, key: str, content: bytes, content_type: str, filename: str) -> StoredFile:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def url(self, key: str) -> Optional[str]:
        """Link a client can fetch the file from, or None when the backend has none"""
        return None


def get_r2_client():
    """Create and return an R2 client."""
    return boto3.client(
        "s3",
        endpoint_url=f"https://{config.R2_ACCOUNT_ID}.r2.cloudflarestorage.com",
        aws_access_key_id=config.R2_ACCESS_KEY_ID,
        aws_secret_access_key=config.R2_SECRET_ACCESS_KEY,
        config=Config(signature_version="s3v4"),
    )


class R2AttachmentStorage(AttachmentStorage):
    def __init__(self, client=None, bucket: Optional[str] = None):
        self._client = client
        self.bucket = bucket or config.R2_BUCKET_NAME

    @property
    def client(self):
        if self._client is None:
            self._client = get_r2_client()
        return self._client

    def store(self, key: str, content: bytes, content_type: str, filename: str) -> StoredFile:
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=content,
                ContentType=content_type,
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(f"❌ Failed to upload {key} to R2: {e}")
            raise StorageError(f"Failed to store {filename}") from e

        logger.info(f"✅ Uploaded attachment to R2: {key} ({len(content)} bytes)")
        return StoredFile(filename=filename, path=key, size=len(content))

    def delete(self, key: str) -> None:
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            logger.error(f"❌ Failed to delete {key} from R2: {e}")
            raise StorageError(f"Failed to delete {key}") from e
        logger.info(f"🗑️ Deleted attachment from R2: {key}")

    def url(self, key: str, expiration: int = PRESIGNED_URL_EXPIRATION) -> Optional[str]:
        """Generate a presigned URL for a private attachment."""
        try:
            return self.client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key, "ResponseContentDisposition": "inline"},
                ExpiresIn=expiration,
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(f"❌ Failed to presign {key}: {e}")
            return None


def check_image_filename(filename: Optional[str]) -> Optional[str]:
    """Return an error message for an unsafe or non-image filename, else None"""
    if not filename:
        return "Filename is required"
    for char in DANGEROUS_FILENAME_CHARS:
        if char in filename:
            return f"Invalid filename - contains dangerous character '{char}'"
    if not filename.lower().endswith(ALLOWED_IMAGE_EXTENSIONS):
        return "Invalid filename - must have a valid image extension"
    if len(filename) > 255:
        return "Filename too long - maximum 255 characters"
    return None


_storage: Optional[AttachmentStorage] = None


def get_attachment_storage() -> AttachmentStorage:
    """Dependency returning the process-wide storage adapter"""
    global _storage
    if _storage is None:
        _storage = R2AttachmentStorage()
    return _storage
