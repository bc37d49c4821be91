"""
Boundary functions for the S3 log collector.

Each function wraps exactly one kind of SQS or S3 call. None of them keep
state: clients, the queue URL and the Powertools logger are passed in by the
caller, so they can be unit-tested in isolation with moto or mocks.

Service errors are caught here, at the call boundary, and returned as a
`CallResult` carrying a `FailureReason`. Deciding whether a failure is worth
more than a log line is left to the orchestration in `collector`.
"""

import json
import os
from typing import Any, Dict, List, Optional, cast
from urllib.parse import unquote_plus

from aws_lambda_powertools import Logger, Metrics
from aws_lambda_powertools.metrics import MetricUnit
from boto3.exceptions import Boto3Error
from botocore.exceptions import BotoCoreError, ClientError

# Import boto3 stubs for full type-safety in function signatures
from mypy_boto3_s3 import S3Client
from mypy_boto3_sqs import SQSClient

from .config import MAX_RECEIVE_BATCH, MAX_WAIT_TIME_SECONDS
from .model import CallResult, ExtractionResult, FailureReason, S3ObjectRef, SQSMessage

METRICS_NAMESPACE = "S3LogCollector"

_QUEUE_NOT_FOUND_CODES = {"AWS.SimpleQueueService.NonExistentQueue", "QueueDoesNotExist"}
_ACCESS_DENIED_CODES = {"AccessDenied", "AccessDeniedException", "403", "InvalidClientTokenId", "KMS.AccessDeniedException"}
_OBJECT_NOT_FOUND_CODES = {"404", "NoSuchKey", "NoSuchBucket", "NotFound"}


def _classify(error: Exception) -> FailureReason:
    """Maps a botocore error to a FailureReason."""
    if not isinstance(error, ClientError):
        return FailureReason.SERVICE_ERROR
    code = error.response.get("Error", {}).get("Code", "")
    if code in _QUEUE_NOT_FOUND_CODES:
        return FailureReason.QUEUE_NOT_FOUND
    if code in _ACCESS_DENIED_CODES:
        return FailureReason.ACCESS_DENIED
    if code in _OBJECT_NOT_FOUND_CODES:
        return FailureReason.OBJECT_NOT_FOUND
    return FailureReason.SERVICE_ERROR


# --- Queue access ---


def verify_queue_access(sqs_client: SQSClient, queue_url: str, logger: Logger) -> CallResult:
    """
    Verifies that the queue exists and that the caller may read it.

    Args:
        sqs_client: The boto3 SQS client.
        queue_url: The URL of the queue to verify.
        logger: The Powertools Logger instance for structured logging.

    Returns:
        A successful CallResult if `GetQueueAttributes` succeeds, otherwise a
        failed one with the reason the queue could not be read.
    """
    try:
        sqs_client.get_queue_attributes(QueueUrl=queue_url, AttributeNames=["All"])
    except (ClientError, BotoCoreError) as e:
        reason = _classify(e)
        logger.error(
            "Could not verify SQS queue access.",
            extra={"queue_url": queue_url, "reason": reason.value, "error": str(e)},
        )
        return CallResult.failure(reason, str(e))
    logger.debug("Verified SQS queue access.", extra={"queue_url": queue_url})
    return CallResult.success()


def estimate_backlog(sqs_client: SQSClient, queue_url: str, logger: Logger) -> int:
    """
    Returns the approximate number of visible messages in the queue.

    The value is eventually consistent and is only used as a gate to skip a
    pointless long poll. Any failure is logged and reported as 0.
    """
    try:
        attrs = sqs_client.get_queue_attributes(
            QueueUrl=queue_url, AttributeNames=["ApproximateNumberOfMessages"]
        )
        count = int(attrs.get("Attributes", {}).get("ApproximateNumberOfMessages", 0))
    except (ClientError, BotoCoreError) as e:
        logger.warning(
            "Could not read SQS queue depth.",
            extra={"queue_url": queue_url, "reason": _classify(e).value, "error": str(e)},
        )
        return 0
    except ValueError as e:
        logger.warning("Unparsable SQS queue depth.", extra={"queue_url": queue_url, "error": str(e)})
        return 0
    return max(count, 0)


def receive_batch(
    sqs_client: SQSClient,
    queue_url: str,
    logger: Logger,
    max_messages: int = MAX_RECEIVE_BATCH,
    wait_time_seconds: int = MAX_WAIT_TIME_SECONDS,
) -> List[SQSMessage]:
    """
    Receives up to `max_messages` messages using long polling.

    An empty list is a normal outcome: the backlog estimate is approximate and
    another consumer may have taken the messages in the meantime.

    Raises:
        ValueError: If `max_messages` or `wait_time_seconds` is outside the
                    limits SQS accepts.
    """
    if not 1 <= max_messages <= MAX_RECEIVE_BATCH:
        raise ValueError(f"max_messages must be between 1 and {MAX_RECEIVE_BATCH}, got {max_messages}")
    if not 0 <= wait_time_seconds <= MAX_WAIT_TIME_SECONDS:
        raise ValueError(f"wait_time_seconds must be between 0 and {MAX_WAIT_TIME_SECONDS}, got {wait_time_seconds}")

    try:
        response = sqs_client.receive_message(
            QueueUrl=queue_url,
            MaxNumberOfMessages=max_messages,
            WaitTimeSeconds=wait_time_seconds,
        )
    except (ClientError, BotoCoreError) as e:
        logger.error(
            "ClientError on SQS receive_message.",
            extra={"queue_url": queue_url, "reason": _classify(e).value, "error": str(e)},
        )
        return []

    messages = cast(List[SQSMessage], response.get("Messages", []))
    logger.info(f"Retrieved {len(messages)} SQS messages.", extra={"queue_url": queue_url})
    return messages


def acknowledge_message(
    sqs_client: SQSClient, queue_url: str, message: SQSMessage, logger: Logger
) -> CallResult:
    """
    Deletes a processed message from the queue using its receipt handle.

    A failure here is not fatal but it is consequential: the message becomes
    visible again once its visibility timeout expires and will be processed a
    second time. It is logged with a distinct message for that reason.
    """
    msg_id = message.get("MessageId")
    try:
        sqs_client.delete_message(QueueUrl=queue_url, ReceiptHandle=message["ReceiptHandle"])
    except (ClientError, BotoCoreError) as e:
        reason = _classify(e)
        logger.error(
            "Failed to delete SQS message. Message will be redelivered.",
            extra={"messageId": msg_id, "reason": reason.value, "error": str(e)},
        )
        return CallResult.failure(reason, str(e))
    logger.info("Deleted SQS message.", extra={"messageId": msg_id})
    return CallResult.success()


def divert_message(
    sqs_client: SQSClient,
    target_queue_url: str,
    source_queue_url: str,
    message: SQSMessage,
    logger: Logger,
) -> CallResult:
    """
    Copies the raw body of an undecodable message to a separate queue.

    The source queue URL and message ID travel as message attributes so the
    copy can be traced back to where it came from.
    """
    msg_id = message.get("MessageId", "")
    try:
        sqs_client.send_message(
            QueueUrl=target_queue_url,
            MessageBody=message.get("Body") or "<empty>",
            MessageAttributes={
                "SourceQueueUrl": {"DataType": "String", "StringValue": source_queue_url},
                "SourceMessageId": {"DataType": "String", "StringValue": msg_id or "unknown"},
            },
        )
    except (ClientError, BotoCoreError) as e:
        reason = _classify(e)
        logger.error(
            "Failed to divert malformed SQS message.",
            extra={"messageId": msg_id, "target_queue_url": target_queue_url, "reason": reason.value, "error": str(e)},
        )
        return CallResult.failure(reason, str(e))
    logger.info("Diverted malformed SQS message.", extra={"messageId": msg_id, "target_queue_url": target_queue_url})
    return CallResult.success()


# --- Message decoding ---


def _unwrap_sns_envelope(payload: Any) -> Any:
    """Returns the inner document of an SNS notification delivered without raw message delivery."""
    if isinstance(payload, dict) and payload.get("Type") == "Notification" and isinstance(payload.get("Message"), str):
        return json.loads(payload["Message"])
    return payload


def extract_object_refs(message: SQSMessage, logger: Logger) -> ExtractionResult:
    """
    Decodes a message body as an S3 event notification.

    The body may be the notification itself or an SNS envelope around it.
    Records from other event sources (no `s3` member) are skipped, as are
    records whose bucket name or object key is missing. Object keys are
    URL-decoded, as S3 encodes them in notifications.

    Args:
        message: The SQS message to decode.
        logger: The Powertools Logger instance for structured logging.

    Returns:
        An ExtractionResult with the references in record order. If the body
        is not a notification at all, `refs` is empty and `malformed` is set.
    """
    msg_id = message.get("MessageId")
    try:
        payload = _unwrap_sns_envelope(json.loads(message.get("Body") or ""))
    except (ValueError, TypeError, RecursionError) as e:
        logger.error("Malformed SQS message.", extra={"messageId": msg_id, "error": str(e)})
        return ExtractionResult(malformed=True)

    if not isinstance(payload, dict):
        logger.error("Malformed SQS message.", extra={"messageId": msg_id, "error": "body is not a JSON object"})
        return ExtractionResult(malformed=True)

    if payload.get("Event") == "s3:TestEvent":
        logger.info("Skipping S3 test event.", extra={"messageId": msg_id, "bucket": payload.get("Bucket")})
        return ExtractionResult(test_event=True)

    records = payload.get("Records")
    if not isinstance(records, list):
        logger.error("Malformed SQS message.", extra={"messageId": msg_id, "error": "no 'Records' list in body"})
        return ExtractionResult(malformed=True)

    result = ExtractionResult()
    for index, record in enumerate(records):
        if not isinstance(record, dict) or "s3" not in record:
            logger.debug("Skipping non-S3 record.", extra={"messageId": msg_id, "record_index": index})
            continue
        try:
            bucket = record["s3"]["bucket"]["name"]
            key = record["s3"]["object"]["key"]
        except (KeyError, TypeError) as e:
            logger.warning(
                "S3 record without bucket name or object key.",
                extra={"messageId": msg_id, "record_index": index, "error": repr(e)},
            )
            continue
        if not isinstance(bucket, str) or not isinstance(key, str) or not bucket or not key:
            logger.warning("S3 record with empty bucket name or object key.", extra={"messageId": msg_id, "record_index": index})
            continue
        result.refs.append(S3ObjectRef(bucket=bucket, key=unquote_plus(key)))

    return result


# --- Object download ---


def destination_for_key(download_dir: str, key: str) -> Optional[str]:
    """
    Returns the local path an object key is downloaded to.

    The path depends only on the key, so fetching the same object twice
    overwrites the first copy. Returns None for keys that do not name a file
    inside `download_dir` (folder markers, `..` traversal, NUL bytes).
    """
    if not key or key.endswith("/") or "\x00" in key:
        return None
    root = os.path.realpath(download_dir)
    destination = os.path.realpath(os.path.join(root, key.lstrip("/")))
    if destination == root or os.path.commonpath([root, destination]) != root:
        return None
    return destination


def fetch_object(s3_client: S3Client, ref: S3ObjectRef, download_dir: str, logger: Logger) -> CallResult:
    """
    Downloads one S3 object into the scratch directory.

    Args:
        s3_client: The boto3 S3 client.
        ref: The object to download.
        download_dir: The scratch root; see `destination_for_key`.
        logger: The Powertools Logger instance for structured logging.

    Returns:
        A CallResult. Failures are logged here and never raised, so one bad
        object does not stop the rest of the batch.
    """
    destination = destination_for_key(download_dir, ref.key)
    if destination is None:
        logger.error("Refusing to download S3 object outside the download directory.", extra={"object": str(ref)})
        return CallResult.failure(FailureReason.INVALID_KEY, f"key {ref.key!r} does not map to a file")

    try:
        os.makedirs(os.path.dirname(destination), exist_ok=True)
        s3_client.download_file(ref.bucket, ref.key, destination)
    except (ClientError, BotoCoreError, Boto3Error) as e:
        reason = _classify(e)
        logger.error(
            "Failed to download S3 object.",
            extra={"object": str(ref), "reason": reason.value, "error": str(e)},
        )
        return CallResult.failure(reason, str(e))
    except OSError as e:
        logger.error(
            "Failed to write S3 object to local storage.",
            extra={"object": str(ref), "destination": destination, "error": str(e)},
        )
        return CallResult.failure(FailureReason.LOCAL_IO_ERROR, str(e))

    logger.info("Downloaded S3 object.", extra={"object": str(ref), "destination": destination})
    return CallResult.success()


# --- Metrics ---


def emit_metrics(metrics: Metrics, status: str, payload: Dict[str, Any]) -> None:
    """
    Records the outcome of one invocation on the Powertools Metrics instance.

    Every integer value in `payload` becomes a metric (Milliseconds for
    latencies, Count otherwise); other values and `status` are attached as
    metadata. The EMF document is written when the handler's
    `@metrics.log_metrics` decorator flushes.
    """
    metrics.add_metadata(key="Status", value=status)
    for name, value in payload.items():
        if isinstance(value, int) and not isinstance(value, bool):
            unit = MetricUnit.Milliseconds if "Latency" in name else MetricUnit.Count
            metrics.add_metric(name=name, unit=unit, value=value)
        else:
            metrics.add_metadata(key=name, value=value)
