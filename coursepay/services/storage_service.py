# coursepay/services/storage_service.py
from functools import lru_cache

import boto3

from coursepay.config import settings


class FileStorage:
    """S3-compatible (Cloudflare R2) bucket holding course attachments."""

    def __init__(self, client=None, bucket: str = None):
        self.bucket = bucket or settings.r2_bucket_name
        self.client = client or boto3.client(
            "s3",
            endpoint_url=f"https://{settings.r2_account_id}.r2.cloudflarestorage.com",
            aws_access_key_id=settings.r2_access_key_id,
            aws_secret_access_key=settings.r2_secret_access_key,
            region_name="auto",
        )

    def presigned_url(self, key: str, file_name: str = None, expires: int = None) -> str:
        params = {"Bucket": self.bucket, "Key": key}
        if file_name:
            params["ResponseContentDisposition"] = f'attachment; filename="{file_name}"'
        return self.client.generate_presigned_url(
            "get_object",
            Params=params,
            ExpiresIn=expires or settings.presigned_url_expires_seconds,
        )


@lru_cache(maxsize=1)
def get_file_storage() -> FileStorage:
    return FileStorage()
