"""Helpers for building AWS clients from the project's credentials.

Sessions are cached per process. When static keys are configured they are
used, otherwise boto3 falls back to its default credential chain (IAM role,
environment, shared config).
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Optional

import boto3
from botocore.config import Config
from django.conf import settings

LOGGER = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_boto3_session() -> boto3.Session:
    """Return a cached boto3 session for the configured region."""

    access_key = getattr(settings, "AWS_ACCESS_KEY_ID", "") or None
    secret_key = getattr(settings, "AWS_SECRET_ACCESS_KEY", "") or None
    region = getattr(settings, "AWS_S3_REGION_NAME", "us-east-1")

    if access_key and secret_key:
        return boto3.Session(
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            region_name=region,
        )

    LOGGER.debug("No static AWS keys configured; using the default credential chain")
    return boto3.Session(region_name=region)


def get_s3_client(*, endpoint_url: Optional[str] = None):
    """Return an S3 client with signature v4 and bounded retries."""

    config = Config(
        signature_version="s3v4",
        retries={"max_attempts": 3, "mode": "standard"},
        connect_timeout=10,
        read_timeout=60,
    )
    endpoint_url = endpoint_url or getattr(settings, "AWS_S3_ENDPOINT_URL", "") or None
    return get_boto3_session().client("s3", endpoint_url=endpoint_url, config=config)
