"""Ingress events pushed by the routing layer."""

import logging
import time
from datetime import datetime
from typing import Any, Callable, Literal, Mapping, Optional, Union

from pydantic import BaseModel, Field, ValidationError

from .context import ManagerContext
from .monitor import parse_load_header
from .types import Instance, RequestStats
from .exceptions import EventValidationError


logger = logging.getLogger(__name__)


# Headers set by the load balancer on proxied requests and responses
HOST_HEADER = "x-imgcloud-host"
LOAD_HEADER = "x-imgcloud-load"
START_LB_HEADER = "x-imgcloud-start-lb"
START_APP_HEADER = "x-imgcloud-start-app"


def _header(headers: Mapping[str, Any], name: str) -> Optional[str]:
    """Case-insensitive header lookup that works on plain dicts."""
    value = headers.get(name)
    if value is None:
        lowered = name.lower()
        for key, candidate in headers.items():
            if key.lower() == lowered:
                value = candidate
                break
    return None if value is None else str(value)


class ServerFailureEvent(BaseModel):
    """The routing layer could not reach an instance."""
    kind: Literal["serverFailure"] = "serverFailure"
    instance_id: int = Field(..., gt=0)

    @classmethod
    def from_headers(cls, request_headers: Mapping[str, Any]) -> 'ServerFailureEvent':
        return parse_event("serverFailure", {
            "instance_id": _header(request_headers, HOST_HEADER),
        })


class RequestEndEvent(BaseModel):
    """A proxied request finished on an instance."""
    kind: Literal["requestEnd"] = "requestEnd"
    instance_id: int = Field(..., gt=0)
    observed_load: float = Field(..., allow_inf_nan=False)
    request_path: str
    lb_started_ms: Optional[float] = None
    app_started_ms: Optional[float] = None
    finished_ms: Optional[float] = None

    @classmethod
    def from_headers(
        cls,
        request_headers: Mapping[str, Any],
        response_headers: Mapping[str, Any],
        request_path: str,
        now_ms: Optional[float] = None
    ) -> 'RequestEndEvent':
        """Build the event from the headers the load balancer sees.

        Raises:
            EventValidationError: If a required header is missing or malformed
        """
        raw_load = _header(response_headers, LOAD_HEADER)
        try:
            observed_load = parse_load_header(raw_load)
        except ValueError as e:
            raise EventValidationError("requestEnd", [f"{LOAD_HEADER}: {e}"]) from e

        return parse_event("requestEnd", {
            "instance_id": _header(request_headers, HOST_HEADER),
            "observed_load": observed_load,
            "request_path": request_path,
            "lb_started_ms": _header(request_headers, START_LB_HEADER),
            "app_started_ms": _header(request_headers, START_APP_HEADER),
            "finished_ms": now_ms if now_ms is not None else time.time() * 1000,
        })

    @property
    def lb_latency_ms(self) -> float:
        """Time between the load balancer and the application picking up the request."""
        if self.lb_started_ms is None or self.app_started_ms is None:
            return 0.0
        return self.app_started_ms - self.lb_started_ms

    @property
    def app_latency_ms(self) -> float:
        if self.app_started_ms is None or self.finished_ms is None:
            return 0.0
        return self.finished_ms - self.app_started_ms


IngressEvent = Union[ServerFailureEvent, RequestEndEvent]

EVENT_TYPES = {
    "serverFailure": ServerFailureEvent,
    "requestEnd": RequestEndEvent,
}


def parse_event(kind: str, payload: Mapping[str, Any]) -> IngressEvent:
    """Validate a raw payload into one of the two event kinds.

    Raises:
        EventValidationError: For unknown kinds or invalid fields
    """
    model = EVENT_TYPES.get(kind)
    if model is None:
        raise EventValidationError(kind, [f"unknown event kind, expected one of {sorted(EVENT_TYPES)}"])

    if not isinstance(payload, Mapping):
        raise EventValidationError(kind, ["payload must be a mapping"])

    data = {key: value for key, value in payload.items() if value is not None}
    data["kind"] = kind
    try:
        return model(**data)
    except ValidationError as e:
        raise EventValidationError(kind, e.errors()) from e


class EventIngestor:
    """Applies ingress events to the registry."""

    def __init__(self, context: ManagerContext, mark_dead: Callable[[Instance], bool]):
        """Initialize event ingestor.

        Args:
            context: Shared manager context
            mark_dead: Retires an instance (see ``FailureDetector.mark_dead``)
        """
        self.context = context
        self.mark_dead = mark_dead

    def ingest(self, event: IngressEvent) -> bool:
        """Dispatch a validated event.

        Returns:
            True if the event's instance was found in the registry
        """
        if isinstance(event, ServerFailureEvent):
            return self._on_server_failure(event)
        if isinstance(event, RequestEndEvent):
            return self._on_request_end(event)
        raise EventValidationError(type(event).__name__, ["unsupported event type"])

    def _on_server_failure(self, event: ServerFailureEvent) -> bool:
        logger.info(f"ServerFailure for {event.instance_id}")
        instance = self.context.registry.find_by_id(event.instance_id)
        if instance is None:
            logger.debug(f"ServerFailure for unknown instance {event.instance_id}")
            return False

        self.mark_dead(instance)
        return True

    def _on_request_end(self, event: RequestEndEvent) -> bool:
        instance = self.context.registry.find_by_id(event.instance_id)
        if instance is None:
            logger.debug(f"requestEnd for unknown instance {event.instance_id}")
            return False

        # Immediate correction; the history only holds polled samples
        instance.load = event.observed_load

        if event.request_path == self.context.config.upload_path and self.context.config.stats.enabled:
            stats = RequestStats(
                instance_id=instance.id,
                timestamp=datetime.now(),
                lb_latency_ms=event.lb_latency_ms,
                app_latency_ms=event.app_latency_ms,
                load=event.observed_load
            )
            self.context.spawn(
                self.context.stats_sink.write_request_stats(stats),
                f"write request stats for instance {instance.id}"
            )

        return True
