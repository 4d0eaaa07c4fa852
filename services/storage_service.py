"""
Object Storage Access - presigned upload/download URLs against Cloudflare R2

The bucket is reached through the S3-compatible API with boto3. Upload URLs
are issued before the client PUTs the object; download URLs use the public
base URL when the bucket is publicly readable and a signed GET otherwise.
"""

import logging
from typing import Optional, Sequence
from urllib.parse import quote

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from config import Config
from utils.exceptions import ExternalServiceError, ValidationError

logger = logging.getLogger(__name__)

_MISSING_OBJECT_CODES = {"404", "NoSuchKey", "NotFound"}


def build_s3_client():
    """boto3 client for R2; None when credentials are not configured"""
    if not (Config.R2_ENDPOINT and Config.R2_ACCESS_KEY_ID and Config.R2_SECRET_ACCESS_KEY):
        logger.warning("⚠️ R2_NOT_CONFIGURED: object storage URLs will be unavailable")
        return None

    return boto3.client(
        "s3",
        endpoint_url=Config.R2_ENDPOINT,
        aws_access_key_id=Config.R2_ACCESS_KEY_ID,
        aws_secret_access_key=Config.R2_SECRET_ACCESS_KEY,
        region_name="auto",
        config=BotoConfig(signature_version="s3v4", retries={"max_attempts": 3}),
    )


class PresignedAccessIssuer:
    """Issues time-limited URLs for one bucket"""

    def __init__(
        self,
        client,
        bucket: str,
        expires_in: int = 900,
        public_base_url: Optional[str] = None,
        max_upload_bytes: int = 200 * 1024 * 1024,
        allowed_content_types: Sequence[str] = (),
    ):
        self._client = client
        self.bucket = bucket
        self.expires_in = expires_in
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None
        self.max_upload_bytes = max_upload_bytes
        self.allowed_content_types = {ct.lower() for ct in allowed_content_types}

    @classmethod
    def from_config(cls, client=None) -> "PresignedAccessIssuer":
        return cls(
            client=client if client is not None else build_s3_client(),
            bucket=Config.R2_BUCKET_NAME,
            expires_in=Config.PRESIGNED_URL_EXPIRES,
            public_base_url=Config.R2_PUBLIC_URL,
            max_upload_bytes=Config.max_upload_bytes(),
            allowed_content_types=Config.ALLOWED_CONTENT_TYPES,
        )

    def validate_upload(self, content_type: Optional[str], content_length) -> None:
        """Size ceiling always applies; content types only when an allow-list is configured"""
        try:
            size = int(content_length)
        except (TypeError, ValueError):
            raise ValidationError("File size must be an integer number of bytes")
        if size <= 0:
            raise ValidationError("File size must be positive")
        if size > self.max_upload_bytes:
            raise ValidationError(
                f"File exceeds the {self.max_upload_bytes // (1024 * 1024)} MB upload limit",
                {"file_size": size, "max_bytes": self.max_upload_bytes},
            )
        if self.allowed_content_types and (content_type or "").lower() not in self.allowed_content_types:
            raise ValidationError(f"Content type not allowed: {content_type}")

    def issue_upload_url(self, key: str, content_type: Optional[str], content_length) -> str:
        self.validate_upload(content_type, content_length)
        params = {"Bucket": self.bucket, "Key": key}
        if content_type:
            params["ContentType"] = content_type
        url = self._presign("put_object", params)
        logger.info(f"🔑 UPLOAD_URL_ISSUED: key={key} expires_in={self.expires_in}s")
        return url

    def issue_download_url(self, key: str, filename_for_disposition: Optional[str] = None) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{quote(key, safe='/')}"

        params = {"Bucket": self.bucket, "Key": key}
        if filename_for_disposition:
            safe_name = filename_for_disposition.replace('"', "")
            params["ResponseContentDisposition"] = f'attachment; filename="{safe_name}"'
        return self._presign("get_object", params)

    def object_exists(self, key: str) -> bool:
        """HEAD the object; a missing key is False, any other failure is an ExternalServiceError"""
        client = self._require_client()
        try:
            client.head_object(Bucket=self.bucket, Key=key)
            return True
        except ClientError as e:
            code = str(e.response.get("Error", {}).get("Code", ""))
            if code in _MISSING_OBJECT_CODES:
                return False
            logger.error(f"❌ R2_HEAD_FAILED: key={key} code={code}")
            raise ExternalServiceError("object-store", f"HEAD failed for {key}: {code}")
        except BotoCoreError as e:
            logger.error(f"❌ R2_HEAD_FAILED: key={key} error={e}")
            raise ExternalServiceError("object-store", str(e))

    def _presign(self, operation: str, params: dict) -> str:
        client = self._require_client()
        try:
            return client.generate_presigned_url(operation, Params=params, ExpiresIn=self.expires_in)
        except (BotoCoreError, ClientError) as e:
            logger.error(f"❌ R2_PRESIGN_FAILED: op={operation} key={params.get('Key')} error={e}")
            raise ExternalServiceError("object-store", f"Could not presign {operation}")

    def _require_client(self):
        if self._client is None:
            raise ExternalServiceError("object-store", "Object storage is not configured")
        return self._client
