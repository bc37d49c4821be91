"""
Shared fixtures for the S3 log collector tests.

AWS calls are served by moto's `mock_aws`; fake credentials are installed for
every test so nothing can reach a real account.
"""

import json
from dataclasses import dataclass
from unittest.mock import MagicMock

import boto3
import pytest
from aws_lambda_powertools import Logger
from botocore.exceptions import ClientError
from moto import mock_aws

from queue_collector.config import CollectorConfig

REGION = "us-east-1"
BUCKET = "central-log-bucket"


@pytest.fixture(autouse=True)
def aws_credentials(monkeypatch):
    """Mocked AWS credentials for moto."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", REGION)
    monkeypatch.setenv("AWS_REGION", REGION)


@pytest.fixture
def logger():
    return Logger(service="queue-collector-test")


@pytest.fixture
def aws():
    """Yields (sqs_client, s3_client) backed by moto."""
    with mock_aws():
        yield boto3.client("sqs", region_name=REGION), boto3.client("s3", region_name=REGION)


@pytest.fixture
def sqs(aws):
    return aws[0]


@pytest.fixture
def s3(aws):
    return aws[1]


@pytest.fixture
def queue_url(sqs):
    return sqs.create_queue(QueueName="s3-log-events")["QueueUrl"]


@pytest.fixture
def bucket(s3):
    s3.create_bucket(Bucket=BUCKET)
    return BUCKET


@pytest.fixture
def config(queue_url, tmp_path):
    return CollectorConfig(
        queue_url=queue_url,
        bucket_name=BUCKET,
        wait_time_seconds=0,
        download_dir=str(tmp_path),
    )


def s3_event_body(*objects):
    """Builds an S3 event notification body for (bucket, key) pairs. Keys are passed through as given."""
    return json.dumps(
        {
            "Records": [
                {
                    "eventVersion": "2.1",
                    "eventSource": "aws:s3",
                    "eventName": "ObjectCreated:Put",
                    "s3": {"bucket": {"name": bucket}, "object": {"key": key, "size": 1}},
                }
                for bucket, key in objects
            ]
        }
    )


def sqs_message(body, msg_id="msg-1"):
    return {"MessageId": msg_id, "ReceiptHandle": f"handle-{msg_id}", "Body": body}


def client_error(code, operation="Operation"):
    return ClientError({"Error": {"Code": code, "Message": f"{code} raised"}}, operation)


def mock_sqs_client(backlog=0, messages=None, access_error=None):
    """
    A MagicMock SQS client.

    `access_error` makes every GetQueueAttributes call fail; otherwise the
    backlog estimate is `backlog` and ReceiveMessage returns `messages`.
    """
    client = MagicMock()

    def _get_queue_attributes(QueueUrl, AttributeNames):
        if access_error is not None:
            raise access_error
        if AttributeNames == ["ApproximateNumberOfMessages"]:
            return {"Attributes": {"ApproximateNumberOfMessages": str(backlog)}}
        return {"Attributes": {"QueueArn": "arn:aws:sqs:us-east-1:123456789012:s3-log-events"}}

    client.get_queue_attributes.side_effect = _get_queue_attributes
    client.receive_message.return_value = {"Messages": messages} if messages is not None else {}
    return client


@dataclass
class FakeLambdaContext:
    function_name: str = "s3-log-collector"
    memory_limit_in_mb: int = 128
    invoked_function_arn: str = "arn:aws:lambda:us-east-1:123456789012:function:s3-log-collector"
    aws_request_id: str = "52fdfc07-2182-154f-163f-5f0f9a621d72"


@pytest.fixture
def lambda_context():
    return FakeLambdaContext()
