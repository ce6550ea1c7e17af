"""
Storage Service
Durable object storage for persisted assets - Google Cloud Storage, S3,
or the local filesystem.
"""

import logging
from pathlib import Path
from typing import Optional

from app.core.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)


class StorageService:
    """Put/get objects by key. Backends are assumed strongly consistent per key."""

    def __init__(self, settings: Optional[Settings] = None):
        settings = settings or default_settings
        # Priority: GCS > Local > S3
        self.use_gcs = settings.USE_GCS
        self.use_local = settings.USE_LOCAL_STORAGE and not self.use_gcs

        if self.use_gcs:
            from google.cloud import storage
            self.gcs_client = storage.Client(project=settings.GCP_PROJECT_ID)
            self.bucket_outputs = self.gcs_client.bucket(settings.GCS_BUCKET_OUTPUTS)
            self.backend = "gcs"
            logger.info(f"[Storage] Using Google Cloud Storage: {settings.GCS_BUCKET_OUTPUTS}")

        elif self.use_local:
            self.base_path = Path(settings.LOCAL_STORAGE_PATH)
            self.base_path.mkdir(parents=True, exist_ok=True)
            self.backend = "local"
            logger.info(f"[Storage] Using local storage: {self.base_path}")

        else:
            import boto3
            from botocore.config import Config
            self.s3 = boto3.client(
                "s3",
                endpoint_url=settings.S3_ENDPOINT or None,
                aws_access_key_id=settings.S3_ACCESS_KEY,
                aws_secret_access_key=settings.S3_SECRET_KEY,
                region_name=settings.S3_REGION,
                config=Config(signature_version="s3v4")
            )
            self.bucket = settings.S3_BUCKET
            self.backend = "s3"
            logger.info(f"[Storage] Using S3: {self.bucket}")

    async def upload_bytes(self, data: bytes, path: str, content_type: str = "image/jpeg") -> str:
        """Upload bytes and return URL. Overwrites an existing object at `path`."""
        if self.use_gcs:
            return await self._upload_gcs(data, path, content_type)
        elif self.use_local:
            return await self._upload_local(data, path)
        else:
            return await self._upload_s3(data, path, content_type)

    async def _upload_gcs(self, data: bytes, path: str, content_type: str) -> str:
        blob = self.bucket_outputs.blob(path)
        blob.upload_from_string(data, content_type=content_type)
        return self.object_url(path)

    async def _upload_local(self, data: bytes, path: str) -> str:
        file_path = self.base_path / path
        file_path.parent.mkdir(parents=True, exist_ok=True)

        # Write-then-rename so readers never see a partial object
        tmp_path = file_path.with_name(file_path.name + ".part")
        with open(tmp_path, "wb") as f:
            f.write(data)
        tmp_path.replace(file_path)

        return self.object_url(path)

    async def _upload_s3(self, data: bytes, path: str, content_type: str) -> str:
        self.s3.put_object(
            Bucket=self.bucket,
            Key=path,
            Body=data,
            ContentType=content_type
        )
        return self.object_url(path)

    async def exists(self, path: str) -> bool:
        """Whether an object is already stored at `path`."""
        if self.use_gcs:
            return self.bucket_outputs.blob(path).exists()
        elif self.use_local:
            return (self.base_path / path).is_file()
        else:
            from botocore.exceptions import ClientError
            try:
                self.s3.head_object(Bucket=self.bucket, Key=path)
                return True
            except ClientError as e:
                if e.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound"):
                    return False
                raise

    async def get_file(self, path: str) -> bytes:
        """Get file contents."""
        if self.use_gcs:
            return self.bucket_outputs.blob(path).download_as_bytes()
        elif self.use_local:
            file_path = (self.base_path / path).resolve()
            if not file_path.is_relative_to(self.base_path.resolve()):
                raise FileNotFoundError(path)
            with open(file_path, "rb") as f:
                return f.read()
        else:
            response = self.s3.get_object(Bucket=self.bucket, Key=path)
            return response["Body"].read()

    def object_url(self, path: str) -> str:
        """Durable reference for the object at `path`, as returned by upload_bytes."""
        if self.use_gcs:
            # API proxy URL; clients never need bucket permissions
            return f"/files/{path}"
        elif self.use_local:
            return f"file://{(self.base_path / path).absolute()}"
        else:
            return f"s3://{self.bucket}/{path}"
