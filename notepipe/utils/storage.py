# notepipe/utils/storage.py
from __future__ import annotations

import logging

import boto3
from botocore.config import Config

from ..config import Settings

logger = logging.getLogger(__name__)


def s3_client(settings: Settings):
    """Create an S3 client (works against AWS and B2/MinIO style endpoints)."""
    config = Config(
        signature_version="s3v4",
        s3={"addressing_style": "path"},
    )
    return boto3.client(
        "s3",
        endpoint_url=settings.s3_endpoint,
        region_name=settings.s3_region,
        aws_access_key_id=settings.aws_access_key_id,
        aws_secret_access_key=settings.aws_secret_access_key,
        config=config,
    )


class ObjectStorage:
    """Thin wrapper over the two S3 calls the pipeline needs."""

    def __init__(self, client):
        self.client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "ObjectStorage":
        return cls(s3_client(settings))

    def signed_url(self, bucket: str, key: str, expires_in: int = 3600) -> str:
        return self.client.generate_presigned_url(
            "get_object",
            Params={"Bucket": bucket, "Key": key},
            ExpiresIn=expires_in,
        )

    def put_bytes(self, bucket: str, key: str, data: bytes, content_type: str) -> str:
        self.client.put_object(Bucket=bucket, Key=key, Body=data, ContentType=content_type)
        logger.info("Uploaded s3://%s/%s (%d bytes)", bucket, key, len(data))
        return key
