# app/services/storage/s3_service.py
import base64
import logging
from typing import Any
from typing import Protocol

import boto3
from botocore.client import Config
from botocore.exceptions import ClientError
from botocore.exceptions import ConnectionError as BotoConnectionError
from botocore.exceptions import HTTPClientError
from botocore.exceptions import NoCredentialsError
from botocore.exceptions import PartialCredentialsError

from app.core.config import ExportConfig
from app.core.exceptions import AuthFailureError
from app.core.exceptions import ConfigurationError
from app.core.exceptions import PayloadTooLargeError
from app.core.exceptions import SigningFailureError
from app.core.exceptions import UploadTransientError
from app.models.export_models import ExportStage
from app.models.export_models import WriteAck

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT = 5
READ_TIMEOUT = 30

AUTH_ERROR_CODES = {
    "AccessDenied",
    "AllAccessDisabled",
    "ExpiredToken",
    "InvalidAccessKeyId",
    "InvalidToken",
    "SignatureDoesNotMatch",
    "TokenRefreshRequired",
}
TRANSIENT_ERROR_CODES = {
    "BadDigest",
    "InternalError",
    "RequestLimitExceeded",
    "RequestTimeout",
    "ServiceUnavailable",
    "SlowDown",
    "Throttling",
    "ThrottlingException",
    "TooManyRequestsException",
}
TOO_LARGE_ERROR_CODES = {"EntityTooLarge"}


class StorageError(Exception):
    """Storage failure that fits no retry/auth/size class."""


class StorageClient(Protocol):
    """Capabilities the export pipeline needs from an object store."""

    def write(self, key: str, data: bytes, content_type: str, checksum: str) -> WriteAck: ...

    def sign(self, key: str, ttl: int, filename: str | None = None) -> str: ...


def classify_client_error(e: ClientError, stage: ExportStage = ExportStage.UPLOADING) -> Exception:
    """Map a botocore ClientError to the pipeline's error classes."""
    error = e.response.get("Error", {})
    code = str(error.get("Code", ""))
    status = e.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    message = f"{code or 'ClientError'} (status {status}): {error.get('Message', '')}".strip()

    if code in AUTH_ERROR_CODES or status in {401, 403}:
        return AuthFailureError(message, stage=stage)
    if code in TOO_LARGE_ERROR_CODES or status == 413:
        return PayloadTooLargeError(message)
    if code in TRANSIENT_ERROR_CODES or status == 429 or (status is not None and status >= 500):
        return UploadTransientError(message)
    return StorageError(message)


def build_s3_client(config: ExportConfig) -> Any:
    """Create the boto3 S3 client shared by every export invocation."""
    creds = config.credentials
    # La sessione viene creata una volta e riutilizzata
    session = boto3.session.Session(
        aws_access_key_id=creds.access_key_id if creds.explicit else None,
        aws_secret_access_key=creds.secret_access_key if creds.explicit else None,
        aws_session_token=creds.session_token if creds.explicit else None,
        region_name=config.region,
    )
    return session.client(
        "s3",
        endpoint_url=config.storage_endpoint,
        config=Config(
            signature_version="s3v4",
            connect_timeout=CONNECT_TIMEOUT,
            read_timeout=READ_TIMEOUT,
            # Attempts are owned by the UploadManager
            retries={"max_attempts": 0, "mode": "standard"},
        ),
    )


class S3StorageClient:
    """StorageClient backed by boto3. Safe to share across threads."""

    def __init__(self, config: ExportConfig, client: Any | None = None) -> None:
        if not config.bucket:
            raise ConfigurationError("S3 bucket name is not configured (S3_BUCKET_NAME).")
        self.bucket = config.bucket
        self.s3 = client if client is not None else build_s3_client(config)
        logger.info(f"S3 Service initialized for bucket: {self.bucket} in region: {config.region}")

    def write(self, key: str, data: bytes, content_type: str, checksum: str) -> WriteAck:
        # S3 verifies the payload against the sha256 before acknowledging
        digest_b64 = base64.b64encode(bytes.fromhex(checksum)).decode("ascii")
        try:
            rsp = self.s3.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                ChecksumSHA256=digest_b64,
            )
        except ClientError as e:
            logger.warning(f"put_object failed for key {key}: {e}")
            raise classify_client_error(e) from e
        except (BotoConnectionError, HTTPClientError) as e:
            logger.warning(f"Connection problem writing key {key}: {e}")
            raise UploadTransientError(f"Connection error: {e}") from e
        except (NoCredentialsError, PartialCredentialsError) as e:
            raise AuthFailureError(f"Storage credentials unavailable: {e}") from e

        etag = rsp.get("ETag")
        return WriteAck(key=key, etag=etag.strip('"') if etag else None, version_id=rsp.get("VersionId"))

    def sign(self, key: str, ttl: int, filename: str | None = None) -> str:
        params = {"Bucket": self.bucket, "Key": key}
        if filename:
            params["ResponseContentDisposition"] = f'attachment; filename="{filename}"'
        try:
            url = self.s3.generate_presigned_url(ClientMethod="get_object", Params=params, ExpiresIn=ttl)
        except (NoCredentialsError, PartialCredentialsError) as e:
            logger.error(f"Cannot sign URL for key {key}: no credentials")
            raise SigningFailureError(f"Signing credentials unavailable: {e}") from e
        except ClientError as e:
            classified = classify_client_error(e, stage=ExportStage.LINK_ISSUING)
            if isinstance(classified, AuthFailureError):
                raise classified from e
            raise SigningFailureError(f"Could not sign URL: {e}") from e
        logger.info(f"Generated presigned GET URL for key: {key}")
        return url
