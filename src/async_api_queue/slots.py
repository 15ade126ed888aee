# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Slot lifecycle for asynchronous API requests.

Each request id (typically the message / correlation id returned by the
outbound API) owns one slot in the shared store:

    reserve()            capacity check + in-flight increment, no key yet
    mark_pending(id)     Absent  -> Pending   value "pending"
    mark_done(id, body)  Pending -> Done      value = body, in-flight - 1
    remove(id)           Pending|Done -> Absent (in-flight - 1 only if Pending)

reserve() and mark_pending() are separate calls because the id only exists
after the outbound call returns, while the capacity check has to happen
before it. A worker that reserves and then dies before mark_pending leaves
the in-flight count one too high with no key to clean up; that drift is
accepted and bounded by the counter TTL.

Every slot key is written with the configured TTL. Expiry removes the slot
without touching the in-flight count.
"""

import enum
import json
import logging
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .config import COUNT_KEY, SIZE_KEY
from .counter import CounterManager
from .exceptions import QueueFullError
from .notifications import CompletionNotifier
from .observability.metrics import QueueMetrics
from .stores.base import BaseStore

logger = logging.getLogger(__name__)

PENDING_MARKER = "pending"
"""Stored value of a slot that is still waiting for its response."""

DONE_MARKER = "done"
"""Stored value of a slot whose request completed successfully."""

_RESERVED_KEYS = frozenset({SIZE_KEY, COUNT_KEY})


class SlotState(enum.Enum):
    """Observable state of a slot."""

    ABSENT = "absent"
    PENDING = "pending"
    DONE = "done"


class SlotStatus(BaseModel):
    """
    Result of a status check.

    Attributes:
        state: ABSENT, PENDING or DONE
        payload: The stored completion value when DONE, None otherwise.
            Either DONE_MARKER or a serialized error/response body.
    """

    model_config = ConfigDict(frozen=True)

    state: SlotState
    payload: str | None = None

    @model_validator(mode="after")
    def _validate_payload(self) -> "SlotStatus":
        if self.state is SlotState.DONE and self.payload is None:
            raise ValueError("a done slot must carry a payload")
        if self.state is not SlotState.DONE and self.payload is not None:
            raise ValueError(f"a {self.state.value} slot carries no payload")
        return self

    @classmethod
    def from_raw(cls, raw: str | None) -> "SlotStatus":
        if raw is None:
            return cls(state=SlotState.ABSENT)
        if raw == PENDING_MARKER:
            return cls(state=SlotState.PENDING)
        return cls(state=SlotState.DONE, payload=raw)

    @property
    def is_absent(self) -> bool:
        return self.state is SlotState.ABSENT

    @property
    def is_pending(self) -> bool:
        return self.state is SlotState.PENDING

    @property
    def is_done(self) -> bool:
        return self.state is SlotState.DONE

    @property
    def succeeded(self) -> bool:
        """True when done with the plain success marker."""
        return self.is_done and self.payload == DONE_MARKER

    def load_payload(self) -> Any:
        """
        Decode a JSON error/response body stored by ``mark_failed``.

        Returns None for non-DONE slots and the raw string when the payload
        is not valid JSON (including the plain success marker).
        """
        if self.payload is None:
            return None
        try:
            return json.loads(self.payload)
        except ValueError:
            return self.payload


class Reservation(BaseModel):
    """
    Token returned by a successful admission.

    Attributes:
        in_flight: In-flight count right after this reservation was counted
        capacity: Capacity the admission was checked against
        created_at: When the reservation was counted (UTC)
    """

    model_config = ConfigDict(frozen=True)

    in_flight: int = Field(ge=1)
    capacity: int = Field(ge=1)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @model_validator(mode="after")
    def _validate_bounds(self) -> "Reservation":
        if self.in_flight > self.capacity:
            raise ValueError("in_flight cannot exceed capacity")
        return self

    @property
    def age_seconds(self) -> float:
        return (datetime.now(timezone.utc) - self.created_at).total_seconds()


def _validate_request_id(request_id: str) -> None:
    if not isinstance(request_id, str) or not request_id:
        raise ValueError("request_id must be a non-empty string")
    if request_id in _RESERVED_KEYS:
        raise ValueError(f"request_id {request_id!r} collides with a counter key")


class SlotManager:
    """
    Request-scoped state machine built on the counter manager and the store.

    The manager keeps no local state about slots: every answer comes from the
    shared store, so any worker instance can continue a lifecycle another
    instance started.
    """

    def __init__(
        self,
        store: BaseStore,
        counter: CounterManager,
        notifier: CompletionNotifier | None = None,
        metrics: QueueMetrics | None = None,
    ):
        self._store = store
        self._counter = counter
        self._notifier = notifier or CompletionNotifier()
        self._metrics = metrics or QueueMetrics(
            counter.config.key_prefix, enabled=False
        )

    @property
    def ttl_seconds(self) -> int:
        return self._counter.config.ttl_seconds

    async def reserve(self) -> Reservation:
        """
        Admit one request if the queue is below capacity.

        Raises:
            QueueFullError: If in-flight count >= capacity
            StoreUnavailableError: If the store cannot be reached
        """
        capacity = self._counter.config.capacity
        admitted, in_flight = await self._counter.try_increment()
        if not admitted:
            self._metrics.record_rejection()
            self._metrics.observe_in_flight(in_flight)
            logger.warning(
                f"Admission rejected: queue '{self._counter.config.key_prefix}' "
                f"is at capacity ({in_flight}/{capacity} in flight)"
            )
            raise QueueFullError(
                f"no-of-request-is-at-limit (capacity={capacity})",
                capacity=capacity,
                in_flight=in_flight,
            )

        self._metrics.record_admission(in_flight)
        logger.debug(f"Reserved slot ({in_flight}/{capacity} in flight)")
        return Reservation(in_flight=in_flight, capacity=capacity)

    async def mark_pending(self, request_id: str) -> bool:
        """Record that ``request_id`` is waiting for its response."""
        _validate_request_id(request_id)
        result = await self._store.set(request_id, PENDING_MARKER, self.ttl_seconds)
        logger.debug(f"Request {request_id} is pending")
        return result

    async def mark_done(self, request_id: str, payload: str = DONE_MARKER) -> bool:
        """
        Record the completion of ``request_id`` and free its capacity.

        The in-flight count is decremented now rather than at removal, so a
        slow consumer does not hold capacity after the result is available.

        Args:
            request_id: The request id passed to mark_pending
            payload: DONE_MARKER for success, or a serialized error/response body

        Raises:
            ValueError: If payload is the reserved pending marker
        """
        _validate_request_id(request_id)
        if payload == PENDING_MARKER:
            raise ValueError(
                f"payload {PENDING_MARKER!r} is reserved for pending slots"
            )

        result = await self._store.set(request_id, payload, self.ttl_seconds)
        in_flight = await self._counter.decrement()
        self._metrics.record_completion()
        self._metrics.observe_in_flight(in_flight)
        self._notifier.emit(request_id)
        return result

    async def mark_failed(self, request_id: str, body: Any) -> bool:
        """Complete ``request_id`` with an error body, JSON-encoded unless a string."""
        payload = body if isinstance(body, str) else json.dumps(body, default=str)
        return await self.mark_done(request_id, payload)

    async def check_status(self, request_id: str) -> SlotStatus:
        _validate_request_id(request_id)
        return SlotStatus.from_raw(await self._store.get(request_id))

    async def remove(self, request_id: str) -> int:
        """
        Delete the slot for ``request_id``.

        Only a slot that was still pending gives its capacity back here; a
        done slot was already subtracted by mark_done.

        Returns:
            1 if a slot was removed, 0 if there was nothing to remove
        """
        status = await self.check_status(request_id)
        if status.is_absent:
            return 0

        removed = await self._store.delete(request_id)
        if removed == 1 and status.is_pending:
            in_flight = await self._counter.decrement()
            self._metrics.observe_in_flight(in_flight)
        if removed == 1:
            self._metrics.record_removal(status.state.value)
            logger.debug(f"Removed {status.state.value} slot {request_id}")
        return removed
