"""
A factory module for creating and providing boto3 clients.

This module is the Dependency Injection (DI) seam of the application. The
handler asks it for clients once per execution environment and hands them to
the collector explicitly, so tests can substitute moto-backed or mocked clients
without touching module globals.
"""

import logging
import os
from typing import Optional, Tuple

import boto3
import botocore.config

from mypy_boto3_s3 import S3Client
from mypy_boto3_sqs import SQSClient

from .config import CollectorConfig

logger = logging.getLogger(__name__)

# A shared retry configuration for clients that need to be resilient to
# transient network or server-side errors. Long polling holds the connection
# open for up to 20 seconds, so the read timeout must exceed that.
BOTO_CONFIG_RETRYABLE = botocore.config.Config(
    retries={"max_attempts": 5, "mode": "adaptive"},
    read_timeout=30,
)


def get_boto_clients(
    config: CollectorConfig, region_name: Optional[str] = None
) -> Tuple[S3Client, SQSClient]:
    """
    Returns the S3 and SQS clients used by the collector.

    If a `USE_MOTO` flag is present in the environment it's assumed that `moto`
    is active and will intercept the `boto3` calls. Otherwise real AWS clients
    are created.

    Args:
        config: The validated collector configuration. Its `endpoint_url`, if
                set, is applied to both clients.
        region_name: Explicit region. Defaults to `AWS_REGION`.

    Returns:
        A tuple of (s3_client, sqs_client).
    """
    aws_region = region_name or os.environ.get("AWS_REGION")
    if not aws_region:
        logger.warning("AWS_REGION not set, boto3 will attempt to resolve it.")

    if os.environ.get("USE_MOTO"):
        logger.info("MOTO ENABLED: Returning mocked AWS clients.")

    s3_client: S3Client = boto3.client(
        "s3", region_name=aws_region, endpoint_url=config.endpoint_url, config=BOTO_CONFIG_RETRYABLE
    )
    sqs_client: SQSClient = boto3.client(
        "sqs", region_name=aws_region, endpoint_url=config.endpoint_url, config=BOTO_CONFIG_RETRYABLE
    )

    return s3_client, sqs_client
