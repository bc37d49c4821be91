"""
Data models for the S3 log collector.

This module defines the data structures passed between the boundary functions
in `core` and the orchestration in `collector`. TypedDicts describe the payload
shapes produced by AWS (so key access is checked by mypy), while dataclasses
carry the collector's own results.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, TypedDict


class SQSMessage(TypedDict, total=False):
    """
    A single message as returned by the SQS `ReceiveMessage` API.

    Unlike a Lambda SQS event record, the keys here are PascalCase.
    """

    MessageId: str
    ReceiptHandle: str
    Body: str
    # Attributes, MD5OfBody etc. are available but are not used by this application.


@dataclass(frozen=True)
class S3ObjectRef:
    """A (bucket, key) pair taken from an S3 event notification record. The key is URL-decoded."""

    bucket: str
    key: str

    def __str__(self) -> str:
        return f"s3://{self.bucket}/{self.key}"


class FailureReason(str, Enum):
    """Reason codes attached to a failed boundary call."""

    ACCESS_DENIED = "AccessDenied"
    QUEUE_NOT_FOUND = "QueueNotFound"
    OBJECT_NOT_FOUND = "ObjectNotFound"
    INVALID_KEY = "InvalidKey"
    LOCAL_IO_ERROR = "LocalIOError"
    SERVICE_ERROR = "ServiceError"


@dataclass(frozen=True)
class CallResult:
    """
    The outcome of a single call against SQS or S3.

    Boundary functions never raise for service errors; they return one of these
    and leave the logging-vs-escalation decision to the caller.

    Attributes:
        ok: True if the call succeeded.
        reason: Why the call failed. None on success.
        detail: A human-readable description of the failure (usually the
                botocore error message).
    """

    ok: bool
    reason: Optional[FailureReason] = None
    detail: str = ""

    @classmethod
    def success(cls) -> "CallResult":
        return cls(ok=True)

    @classmethod
    def failure(cls, reason: FailureReason, detail: str = "") -> "CallResult":
        return cls(ok=False, reason=reason, detail=detail)

    def __bool__(self) -> bool:
        return self.ok


@dataclass
class ExtractionResult:
    """
    The S3 object references decoded from one message body.

    Attributes:
        refs: The references in the order their records appear in the body.
        malformed: True if the body could not be decoded as an S3 event
                   notification at all (not JSON, not an object, or no `Records`).
        test_event: True if the body is the `s3:TestEvent` S3 sends when a
                    notification configuration is created.
    """

    refs: List[S3ObjectRef] = field(default_factory=list)
    malformed: bool = False
    test_event: bool = False


class RunOutcome(str, Enum):
    NO_ACCESS = "NoAccess"
    EMPTY_BACKLOG = "EmptyBacklog"
    PROCESSED = "Processed"


@dataclass
class RunSummary:
    """
    Counters describing what a single `run_once` invocation did.

    These feed both the final log line and the EMF metrics emitted by the handler.
    """

    outcome: RunOutcome = RunOutcome.PROCESSED
    backlog_estimate: int = 0
    messages_received: int = 0
    objects_fetched: int = 0
    fetch_failures: int = 0
    malformed_messages: int = 0
    messages_acknowledged: int = 0
    acknowledge_failures: int = 0
    messages_diverted: int = 0
    divert_failures: int = 0

    def as_metrics(self) -> dict:
        return {
            "BacklogEstimate": self.backlog_estimate,
            "MessagesReceived": self.messages_received,
            "ObjectsFetched": self.objects_fetched,
            "FetchFailures": self.fetch_failures,
            "MalformedMessages": self.malformed_messages,
            "MessagesAcknowledged": self.messages_acknowledged,
            "AcknowledgeFailures": self.acknowledge_failures,
            "MessagesDiverted": self.messages_diverted,
            "DivertFailures": self.divert_failures,
        }
