"""
Object Storage (MinIO / S3)

Voice notes, job photos, selfies and identity documents are stored here.
Objects are world-readable under unguessable keys, so the stored file
URLs never expire.
"""
import io
import os
from urllib.parse import quote
from uuid import uuid4

import boto3
import orjson
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from khidma.core.config import settings
from khidma.core.logging import get_logger

logger = get_logger(__name__)


class StorageService:
    """S3-compatible object storage client."""

    def __init__(
        self,
        endpoint: str | None = None,
        access_key: str | None = None,
        secret_key: str | None = None,
        bucket: str | None = None,
        secure: bool | None = None,
        public_endpoint: str | None = None,
    ):
        self.endpoint = endpoint or settings.minio_endpoint
        self.access_key = access_key or settings.minio_access_key
        self.secret_key = secret_key or settings.minio_secret_key
        self.bucket = bucket or settings.minio_bucket_name
        self.secure = settings.minio_secure if secure is None else secure
        self.public_endpoint = public_endpoint or settings.minio_public_endpoint

        protocol = "https" if self.secure else "http"
        self.endpoint_url = f"{protocol}://{self.endpoint}"
        self.public_endpoint_url = f"{protocol}://{self.public_endpoint}"

        self._client = None

    @property
    def client(self):
        """Lazy-loaded S3 client."""
        if self._client is None:
            self._client = boto3.client(
                "s3",
                endpoint_url=self.endpoint_url,
                aws_access_key_id=self.access_key,
                aws_secret_access_key=self.secret_key,
                config=Config(signature_version="s3v4"),
                region_name="us-east-1",
            )
            self._ensure_bucket()
        return self._client

    def _ensure_bucket(self) -> None:
        try:
            self._client.head_bucket(Bucket=self.bucket)
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code")
            if error_code in ("404", "NoSuchBucket"):
                logger.info("Creating storage bucket", bucket=self.bucket)
                self._client.create_bucket(Bucket=self.bucket)
            else:
                raise
        self._client.put_bucket_policy(Bucket=self.bucket, Policy=self.read_policy())

    def read_policy(self) -> str:
        """Anonymous GetObject on every key; listing stays private."""
        return orjson.dumps({
            "Version": "2012-10-17",
            "Statement": [{
                "Effect": "Allow",
                "Principal": {"AWS": ["*"]},
                "Action": ["s3:GetObject"],
                "Resource": [f"arn:aws:s3:::{self.bucket}/*"],
            }],
        }).decode()

    @staticmethod
    def build_object_key(filename: str, folder: str) -> str:
        ext = os.path.splitext(filename)[1]
        return f"{folder}/{uuid4().hex}{ext}"

    def upload_bytes(
        self,
        data: bytes,
        filename: str,
        content_type: str = "application/octet-stream",
        folder: str = "uploads",
    ) -> str:
        """Store bytes and return the object key."""
        object_key = self.build_object_key(filename, folder)
        self.client.upload_fileobj(
            io.BytesIO(data),
            self.bucket,
            object_key,
            ExtraArgs={"ContentType": content_type},
        )
        logger.info("File stored", object_key=object_key, size=len(data))
        return object_key

    def get_file_url(self, object_key: str) -> str:
        """Permanent URL of an object on the public endpoint."""
        return f"{self.public_endpoint_url}/{self.bucket}/{quote(object_key)}"

    def delete_file(self, object_key: str) -> bool:
        """Delete an object. Returns False when the backend refused."""
        try:
            self.client.delete_object(Bucket=self.bucket, Key=object_key)
        except (BotoCoreError, ClientError) as e:
            logger.warning("File delete failed", object_key=object_key, error=str(e))
            return False
        logger.info("File deleted", object_key=object_key)
        return True


_storage_service: StorageService | None = None


def get_storage_service() -> StorageService:
    """Storage service singleton."""
    global _storage_service
    if _storage_service is None:
        _storage_service = StorageService()
    return _storage_service
