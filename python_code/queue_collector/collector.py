"""
Orchestration for one scheduled run of the S3 log collector.

`QueueDrainingCollector.run_once` checks that the queue can be read, skips the
poll when the queue looks empty, and otherwise receives one bounded batch and
processes it strictly one message at a time:

  1. Decode the S3 object references in the message body.
  2. Download each referenced object (failures are isolated per object).
  3. Delete the message, once, after every download has been attempted.

There is no retry loop here. A message that could not be deleted becomes
visible again after its visibility timeout and is processed on a later run;
downloads overwrite the same local path, so reprocessing is harmless.
"""

from aws_lambda_powertools import Logger
from mypy_boto3_s3 import S3Client
from mypy_boto3_sqs import SQSClient

from . import core
from .config import CollectorConfig
from .model import RunOutcome, RunSummary, SQSMessage


class QueueDrainingCollector:
    """Drains S3 event notifications from one SQS queue and downloads the referenced objects."""

    def __init__(self, config: CollectorConfig, sqs_client: SQSClient, s3_client: S3Client, logger: Logger):
        self.config = config
        self.sqs = sqs_client
        self.s3 = s3_client
        self.logger = logger

    def run_once(self) -> RunSummary:
        """
        Performs a single drain of the configured queue.

        Returns:
            A RunSummary with the counters for this run. Per-call failures are
            counted and logged, never raised.
        """
        queue_url = self.config.queue_url
        summary = RunSummary()

        if not core.verify_queue_access(self.sqs, queue_url, self.logger):
            self.logger.warning("SQS queue is not accessible; skipping this run.", extra={"queue_url": queue_url})
            summary.outcome = RunOutcome.NO_ACCESS
            return summary

        summary.backlog_estimate = core.estimate_backlog(self.sqs, queue_url, self.logger)
        if summary.backlog_estimate == 0:
            self.logger.info("No messages to process.", extra={"queue_url": queue_url})
            summary.outcome = RunOutcome.EMPTY_BACKLOG
            return summary

        messages = core.receive_batch(
            self.sqs,
            queue_url,
            self.logger,
            max_messages=self.config.max_messages,
            wait_time_seconds=self.config.wait_time_seconds,
        )
        summary.messages_received = len(messages)
        if len(messages) < min(summary.backlog_estimate, self.config.max_messages):
            self.logger.debug(
                "Received fewer messages than the backlog estimate.",
                extra={"backlog_estimate": summary.backlog_estimate, "received": len(messages)},
            )

        for message in messages:
            self._process_message(message, summary)

        self.logger.info("Processed messages from SQS queue.", extra={"queue_url": queue_url, **summary.as_metrics()})
        return summary

    def _process_message(self, message: SQSMessage, summary: RunSummary) -> None:
        """
        Fetches every object a message references, then deletes the message.

        A malformed message is copied to the malformed-message queue first when
        one is configured; if that copy fails the message is not deleted.
        """
        extraction = core.extract_object_refs(message, self.logger)

        for ref in extraction.refs:
            if self.config.bucket_name and ref.bucket != self.config.bucket_name:
                self.logger.warning(
                    "S3 object is outside the configured bucket.",
                    extra={"object": str(ref), "expected_bucket": self.config.bucket_name},
                )
            if core.fetch_object(self.s3, ref, self.config.download_dir, self.logger):
                summary.objects_fetched += 1
            else:
                summary.fetch_failures += 1

        if extraction.malformed:
            summary.malformed_messages += 1
            if self.config.malformed_queue_url:
                diverted = core.divert_message(
                    self.sqs, self.config.malformed_queue_url, self.config.queue_url, message, self.logger
                )
                if not diverted:
                    summary.divert_failures += 1
                    return
                summary.messages_diverted += 1

        if core.acknowledge_message(self.sqs, self.config.queue_url, message, self.logger):
            summary.messages_acknowledged += 1
        else:
            summary.acknowledge_failures += 1
