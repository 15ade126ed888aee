# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Local completion notifications.

CompletionNotifier is an in-process observer hook fired when a request is
marked done. It exists for logging and local side effects only:

- Listeners only ever see completions recorded by THIS process. Another
  worker instance marking a request done is invisible here.
- Emission is best-effort. A failing listener is logged and skipped.

Consumers that need to know whether a request finished must poll
``AsyncApiQueue.check_done``; never wait on this channel.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

logger = logging.getLogger(__name__)

CompletionCallback = Callable[[str], None]


class CompletionNotifier:
    """Fan-out of local "request done" events to registered callbacks."""

    def __init__(self) -> None:
        self._listeners: list[CompletionCallback] = []

    def subscribe(self, callback: CompletionCallback) -> CompletionCallback:
        """
        Register a listener called with the request id on each completion.

        Returns the callback unchanged so this can be used as a decorator.
        """
        if callback not in self._listeners:
            self._listeners.append(callback)
        return callback

    def unsubscribe(self, callback: CompletionCallback) -> bool:
        """Remove a listener. Returns False if it was not registered."""
        try:
            self._listeners.remove(callback)
        except ValueError:
            return False
        return True

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def emit(self, request_id: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(request_id)
            except Exception as e:
                logger.warning(
                    f"Completion listener {listener!r} failed for {request_id}: {e}"
                )


def log_completion(request_id: str) -> None:
    """Default listener: log every local completion."""
    logger.info(f"Request {request_id} is set done")
