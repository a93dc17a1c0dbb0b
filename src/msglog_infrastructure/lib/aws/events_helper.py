"""Send custom events to EventBridge, e.g. to trigger the message logger by hand."""

import json
import logging
from collections.abc import Mapping
from typing import Any

import boto3

from msglog_infrastructure.events import DEFAULT_DETAIL_TYPE, DEFAULT_EVENT_SOURCE
from msglog_infrastructure.lib.aws.ec2_helper import DEFAULT_REGION

logger = logging.getLogger(__name__)


class EventPublishError(Exception):
    """EventBridge accepted the request but rejected one or more entries."""

    def __init__(self, failures: list[dict[str, Any]]):
        self.failures = failures
        reasons = "; ".join(
            f"{failure.get('ErrorCode')}: {failure.get('ErrorMessage')}"
            for failure in failures
        )
        msg = f"EventBridge rejected {len(failures)} event(s): {reasons}"
        super().__init__(msg)


def publish_event(
    detail: Mapping[str, Any],
    source: str = DEFAULT_EVENT_SOURCE,
    detail_type: str = DEFAULT_DETAIL_TYPE,
    region: str = DEFAULT_REGION,
    event_bus_name: str = "default",
) -> str:
    """Put a single custom event on an event bus.

    :param detail: The event detail, forwarded to the task as its input.
    :param source: Value of the event `source` field.
    :param detail_type: Value of the event `detail-type` field.
    :param region: Region of the event bus.
    :param event_bus_name: Name or ARN of the event bus.

    :raises EventPublishError: If EventBridge reports the entry as failed.

    :returns: The ID EventBridge assigned to the event.

    :rtype: str
    """
    events_client = boto3.client("events", region_name=region)
    response = events_client.put_events(
        Entries=[
            {
                "Source": source,
                "DetailType": detail_type,
                "Detail": json.dumps(detail),
                "EventBusName": event_bus_name,
            }
        ]
    )
    if response.get("FailedEntryCount", 0):
        failures = [entry for entry in response["Entries"] if "ErrorCode" in entry]
        raise EventPublishError(failures)
    event_id = response["Entries"][0]["EventId"]
    logger.info("Published %s event %s from %s", detail_type, event_id, source)
    return event_id
