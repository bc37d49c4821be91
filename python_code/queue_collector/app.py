"""
Main AWS Lambda handler for the S3 log collector.

This module is the entry point for the scheduled (EventBridge `rate(...)`)
invocation. Its responsibilities are limited to wiring:
  - Loading and validating configuration once per execution environment.
  - Creating the boto3 clients and handing them to the collector.
  - Running one drain of the queue and emitting the final metrics.

The scheduled event carries no payload the collector needs; the queue to poll
comes from configuration.
"""

import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from aws_lambda_powertools import Logger, Metrics
from aws_lambda_powertools.utilities.typing import LambdaContext

from . import clients, core
from .collector import QueueDrainingCollector
from .config import CollectorConfig

logger = Logger(service="queue-collector")
metrics = Metrics(namespace=core.METRICS_NAMESPACE, service="queue-collector")

_COLLECTOR: Optional[QueueDrainingCollector] = None


def get_collector(force_refresh: bool = False) -> QueueDrainingCollector:
    """
    Returns the collector for this execution environment, building it on first use.

    Raises:
        ConfigurationError: If the environment variables are missing or invalid.
    """
    global _COLLECTOR
    if _COLLECTOR is not None and not force_refresh:
        return _COLLECTOR

    config = CollectorConfig.from_env()
    logger.setLevel(config.log_level)
    metrics.set_default_dimensions(Environment=config.environment)
    s3_client, sqs_client = clients.get_boto_clients(config)
    _COLLECTOR = QueueDrainingCollector(config, sqs_client, s3_client, logger)
    logger.info("Collector initialized.", extra={"queue_url": config.queue_url, "environment": config.environment})
    return _COLLECTOR


def _build_response(status_code: int, body: Dict[str, Any]) -> Dict[str, Any]:
    """Centralized helper to build the final Lambda response."""
    return {"statusCode": status_code, "body": json.dumps(body)}


@metrics.log_metrics
@logger.inject_lambda_context
def handler(event: Dict, context: LambdaContext):
    """
    Lambda entry point. Drains one batch from the configured queue.

    Expected failures (queue unreachable, object missing, delete failed) are
    handled inside the collector and reported through logs and metrics. Anything
    else is logged with a failure metric and re-raised so Lambda records the
    invocation as failed.
    """
    start_time = datetime.now(timezone.utc)
    logger.debug("Received scheduled event.", extra={"event": event})
    collector = get_collector()

    try:
        summary = collector.run_once()
    except Exception as e:
        latency_ms = int((datetime.now(timezone.utc) - start_time).total_seconds() * 1000)
        error_payload = {"error_type": type(e).__name__, "error_message": str(e), "ProcessingLatencyMs": latency_ms}
        core.emit_metrics(metrics, "Failure", {**error_payload, "InvocationFailures": 1})
        logger.error(f"Processing failed: {json.dumps(error_payload)}", exc_info=True)
        raise

    latency_ms = int((datetime.now(timezone.utc) - start_time).total_seconds() * 1000)
    log_payload = {"outcome": summary.outcome.value, **summary.as_metrics(), "ProcessingLatencyMs": latency_ms}
    core.emit_metrics(metrics, "Success", log_payload)
    logger.info("Collector run finished.", extra=log_payload)
    return _build_response(200, log_payload)
