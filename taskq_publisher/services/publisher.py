"""
Publish handler: decode -> id assignment -> queue push -> metrics.

Every failure is handled here and turned into a bare INTERNAL_ERROR outcome;
details are only visible in logs and metrics.
"""

import asyncio
import json
import logging
import re
from datetime import datetime, timezone
from json.decoder import scanstring
from typing import Optional, Union

from pydantic import ValidationError

from ..domain.ports import QueueStore, IdGenerator, DecodeError, GenerationError, StoreError
from ..domain.schema import PublishRequest, PublishOutcome
from ..telemetry.context import current_uid
from .metrics import MetricsAggregator
from .watcher import WatchedQueueSet


logger = logging.getLogger(__name__)


_WHITESPACE = re.compile(r"[ \t\n\r]*")


def _reject_constant(name: str) -> None:
    raise ValueError(f"{name} is not valid JSON")


_decoder = json.JSONDecoder(parse_constant=_reject_constant)


def _skip_ws(text: str, idx: int) -> int:
    return _WHITESPACE.match(text, idx).end()


def split_object(text: str) -> dict[str, str]:
    """
    Split a JSON object into the raw text of its top-level members.

    Each member value is validated but returned as the exact slice of
    ``text`` it was read from. A repeated key keeps its last value.

    Args:
        text: JSON text of an object

    Returns:
        Mapping of member name to raw member text

    Raises:
        ValueError: If ``text`` is not a single valid JSON object
    """
    idx = _skip_ws(text, 0)
    if text[idx:idx + 1] != "{":
        raise ValueError("Expected a JSON object")
    idx = _skip_ws(text, idx + 1)

    members: dict[str, str] = {}
    if text[idx:idx + 1] == "}":
        idx += 1
    else:
        while True:
            if text[idx:idx + 1] != '"':
                raise ValueError(f"Expected a member name at offset {idx}")
            name, idx = scanstring(text, idx + 1)
            idx = _skip_ws(text, idx)
            if text[idx:idx + 1] != ":":
                raise ValueError(f"Expected ':' at offset {idx}")
            start = _skip_ws(text, idx + 1)
            _, end = _decoder.raw_decode(text, start)
            members[name] = text[start:end]

            idx = _skip_ws(text, end)
            delimiter = text[idx:idx + 1]
            if delimiter == ",":
                idx = _skip_ws(text, idx + 1)
            elif delimiter == "}":
                idx += 1
                break
            else:
                raise ValueError(f"Expected ',' or '}}' at offset {idx}")

    if _skip_ws(text, idx) != len(text):
        raise ValueError(f"Extra data at offset {idx}")
    return members


def decode_request(raw_body: Union[bytes, str]) -> PublishRequest:
    """
    Decode a request body into a PublishRequest.

    Args:
        raw_body: Raw HTTP request body

    Returns:
        Decoded request carrying the payload's original text

    Raises:
        DecodeError: If the body is not a JSON object with channel and payload
    """
    try:
        text = raw_body.decode("utf-8") if isinstance(raw_body, bytes) else raw_body
        members = split_object(text)
    except ValueError as e:
        raise DecodeError(f"Invalid JSON body: {e}") from e

    fields = {}
    if "channel" in members:
        fields["channel"] = _decoder.decode(members["channel"])
    if "payload" in members:
        fields["payload"] = members["payload"]

    try:
        return PublishRequest.model_validate(fields)
    except ValidationError as e:
        raise DecodeError(
            f"Invalid publish request: {e.error_count()} validation error(s)"
        ) from e


class PublishHandler:
    """
    Handles a single publish request.

    ``put_requests`` counts attempts: it is incremented before decoding,
    so every call is counted exactly once whatever the outcome.
    Ids are generated on a worker thread, since the generator may sleep
    while holding its lock.
    """

    def __init__(
        self,
        queue_store: QueueStore,
        id_generator: IdGenerator,
        metrics: MetricsAggregator,
        watched: Optional[WatchedQueueSet] = None,
        record_watched: bool = False
    ):
        """
        Initialize publish handler.

        Args:
            queue_store: Store the payloads are pushed to
            id_generator: Source of request unique ids
            metrics: Metrics aggregator
            watched: Set of queues sampled by the watcher
            record_watched: Whether to record published-to queues in ``watched``
        """
        self.queue_store = queue_store
        self.id_generator = id_generator
        self.metrics = metrics
        self.watched = watched
        self.record_watched = record_watched and watched is not None

    async def handle(self, raw_body: Union[bytes, str]) -> PublishOutcome:
        """
        Publish the payload of a raw request body.

        Args:
            raw_body: Raw HTTP request body

        Returns:
            PublishOutcome.OK if the payload was pushed, INTERNAL_ERROR otherwise
        """
        self.metrics.incr_put()

        logger.debug("Processing request data", extra={"component": "publisher"})
        try:
            request = decode_request(raw_body)
        except DecodeError as e:
            self.metrics.incr_error()
            logger.error(
                f"Error while JSON decoding the API request: {e}",
                extra={"component": "publisher", "body_size": len(raw_body)}
            )
            return PublishOutcome.INTERNAL_ERROR

        try:
            uid = await asyncio.to_thread(self.id_generator.next_id)
        except GenerationError as e:
            self.metrics.incr_error()
            logger.error(
                f"Unique id generation failed: {e}",
                extra={"component": "publisher", "channel": request.channel}
            )
            return PublishOutcome.INTERNAL_ERROR

        token = current_uid.set(uid)
        try:
            return await self._publish(uid, request)
        finally:
            current_uid.reset(token)

    async def _publish(self, uid: int, request: PublishRequest) -> PublishOutcome:
        payload = request.payload

        logger.debug(
            "Publishing message",
            extra={
                "component": "publisher",
                "uid": uid,
                "channel": request.channel,
                "payload": payload,
                "payload_size": len(payload)
            }
        )
        logger.info(
            "Publishing message",
            extra={
                "component": "publisher",
                "uid": uid,
                "channel": request.channel,
                "payload_size": len(payload)
            }
        )

        try:
            await self.queue_store.push(request.channel, payload)
        except StoreError as e:
            self.metrics.incr_error()
            logger.error(
                f"Couldn't publish message: {e}",
                extra={"component": "publisher", "uid": uid, "channel": request.channel}
            )
            return PublishOutcome.INTERNAL_ERROR

        self.metrics.incr_success()
        logger.info(
            "Published message successfully",
            extra={
                "component": "publisher",
                "uid": uid,
                "channel": request.channel,
                "payload_size": len(payload)
            }
        )

        if self.record_watched:
            self.watched.touch(request.channel, datetime.now(timezone.utc))
            logger.debug(
                "Channel added to LLEN watcher",
                extra={"component": "publisher", "channel": request.channel}
            )

        return PublishOutcome.OK
