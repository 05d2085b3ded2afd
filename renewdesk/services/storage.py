# renewdesk/services/storage.py
import uuid
from typing import Optional

import boto3
from botocore.config import Config
import structlog

from renewdesk.config import settings

logger = structlog.get_logger()


class R2Client:
    """Cloudflare R2 (S3 API) storage for uploaded contract PDFs.

    The boto3 client is built on first use so importing the app never needs
    storage credentials.
    """

    def __init__(self):
        self.bucket = settings.R2_BUCKET_NAME
        self._s3 = None

    @property
    def s3(self):
        if self._s3 is None:
            self._s3 = boto3.client(
                "s3",
                endpoint_url=settings.R2_ENDPOINT_URL or None,
                aws_access_key_id=settings.R2_ACCESS_KEY_ID or None,
                aws_secret_access_key=settings.R2_SECRET_ACCESS_KEY or None,
                config=Config(signature_version="s3v4"),
                region_name="auto",
            )
        return self._s3

    def upload(
        self, file_bytes: bytes, key: str, content_type: str = "application/pdf"
    ) -> str:
        self.s3.put_object(
            Bucket=self.bucket, Key=key, Body=file_bytes, ContentType=content_type
        )
        logger.info("r2_uploaded", key=key, size=len(file_bytes))
        return key

    def delete(self, key: str):
        self.s3.delete_object(Bucket=self.bucket, Key=key)
        logger.info("r2_deleted", key=key)


def build_contract_key(filename: Optional[str]) -> str:
    ext = filename.rsplit(".", 1)[-1].lower() if filename and "." in filename else "pdf"
    return f"{settings.CONTRACT_STORAGE_PREFIX}/{uuid.uuid4()}.{ext}"


r2_client = R2Client()
