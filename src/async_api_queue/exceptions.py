# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Exception classes for the async API queue library.

All exceptions inherit from AsyncQueueError, so callers can catch every
queue-related failure with a single except clause. An absent slot is not an
error: ``check_done`` reports it as ``SlotState.ABSENT``.
"""


class AsyncQueueError(Exception):
    """Base exception for all async API queue errors.

    Example:
        try:
            await queue.add_request()
        except AsyncQueueError as e:
            logger.error(f"Queue error: {e}")
    """

    pass


class QueueFullError(AsyncQueueError):
    """Raised by the admission check when the queue is at capacity.

    The caller must back off or reject the incoming work. The library never
    retries an admission on its own.

    Attributes:
        capacity: The configured maximum number of in-flight requests.
            May be None if the limit was not known at the point of failure.
        in_flight: The in-flight count observed when admission was refused.
            May be None if the count was not read.

    Example:
        try:
            await queue.add_request()
        except QueueFullError:
            # Return 429 / 503 to the client, or requeue upstream
            raise HTTPException(status_code=429, detail="no-of-request-is-at-limit")
    """

    def __init__(
        self,
        message: str = "no-of-request-is-at-limit",
        capacity: int | None = None,
        in_flight: int | None = None,
    ):
        super().__init__(message)
        self.capacity = capacity
        self.in_flight = in_flight


class StoreUnavailableError(AsyncQueueError):
    """Raised when communicating with the shared store fails.

    Connection loss, timeouts and server-side errors all surface as this
    exception with the original client exception chained as ``__cause__``.
    Retry and reconnection policy belongs to the caller or to the store
    client configuration, not to this library.

    Attributes:
        operation: Name of the store operation that failed (e.g. "get").
        key: The prefixed key involved, if any.

    Example:
        try:
            status = await queue.check_done(message_id)
        except StoreUnavailableError as e:
            logger.warning(f"Store down during {e.operation}, retrying later")
    """

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        key: str | None = None,
    ):
        super().__init__(message)
        self.operation = operation
        self.key = key
