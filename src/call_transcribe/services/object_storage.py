"""S3-compatible object storage for published audio and transcripts."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from call_transcribe.errors import ExternalServiceError, ResourceError

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT_URL = "https://sfo3.digitaloceanspaces.com"
# DigitalOcean Spaces signs requests with the us-east-1 region.
DEFAULT_SIGNING_REGION = "us-east-1"


def create_s3_client(
    *,
    endpoint_url: str,
    access_key: str,
    secret_key: str,
    region: str = DEFAULT_SIGNING_REGION,
) -> Any:
    """Create a boto3 S3 client bound to an S3-compatible endpoint."""

    session = boto3.session.Session(
        aws_access_key_id=access_key,
        aws_secret_access_key=secret_key,
        region_name=region,
    )
    return session.client("s3", endpoint_url=endpoint_url)


class S3ObjectStorage:
    """Uploads single files with ``put_object`` and returns their public URL."""

    def __init__(
        self,
        *,
        client: Any,
        bucket: str,
        endpoint_url: str = DEFAULT_ENDPOINT_URL,
        public_base_url: str | None = None,
    ) -> None:
        self.client = client
        self.bucket = bucket
        self.public_base_url = (public_base_url or _virtual_host_url(endpoint_url, bucket)).rstrip(
            "/",
        )

    def put(self, local_path: Path, key: str, content_type: str) -> str:
        try:
            body = local_path.read_bytes()
        except OSError as error:
            raise ResourceError.file_read_failed(str(local_path), error) from error

        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=body,
                ContentType=content_type,
            )
        except ClientError as error:
            status_code = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
            message = error.response.get("Error", {}).get("Message") or str(error)
            logger.warning(
                "Upload of %s to s3://%s/%s rejected (HTTP %s): %s",
                local_path.name,
                self.bucket,
                key,
                status_code,
                message,
            )
            raise ExternalServiceError.object_storage_failed(
                key,
                message,
                status_code=status_code,
            ) from error
        except BotoCoreError as error:
            raise ExternalServiceError.object_storage_failed(key, error) from error

        url = self.url_for(key)
        logger.info("Uploaded %s to %s", local_path.name, url)
        return url

    def url_for(self, key: str) -> str:
        return f"{self.public_base_url}/{key.lstrip('/')}"


def _virtual_host_url(endpoint_url: str, bucket: str) -> str:
    parsed = urlparse(endpoint_url)
    scheme = parsed.scheme or "https"
    host = parsed.netloc or parsed.path
    return f"{scheme}://{bucket}.{host}"
