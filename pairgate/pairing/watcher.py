"""Poll the pairing store for a newly arrived request.

The gateway has no event channel, so detection is a periodic re-read of
the store file. Cancellation is by deadline only.
"""

import time
from dataclasses import replace
from typing import Callable

from loguru import logger

from pairgate.errors import WatchTimeoutError
from pairgate.pairing.approval import find_request
from pairgate.pairing.store import PairingStoreAccessor
from pairgate.pairing.types import PairingRequest


class PairingWatcher:
    """Waits for a pending request to show up in the store."""

    def __init__(
        self,
        accessor: PairingStoreAccessor,
        poll_interval: float = 1.0,
        progress_every: int = 10,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        self.accessor = accessor
        self.poll_interval = poll_interval
        self.progress_every = progress_every
        self._clock = clock
        self._sleep = sleep

    def watch(
        self,
        timeout_seconds: float,
        user_id: str | None = None,
        ignore_existing: bool = False,
    ) -> PairingRequest:
        """
        Return the most recent pending request, waiting up to ``timeout_seconds``.

        Args:
            timeout_seconds: Deadline measured from the call.
            user_id: Only accept requests from this identity. Without it the
                last request wins, which is ambiguous if several users write
                to the bot at once.
            ignore_existing: Skip requests that were already pending when
                the watch started.

        Raises:
            WatchTimeoutError: nothing matched before the deadline.
            StoreMalformedError: the store could not be parsed.
        """
        start = self._clock()
        seen: set[tuple[str, str]] = set()
        if ignore_existing:
            seen = {r.key for r in self.accessor.read().requests}

        polls = 0
        while True:
            store = self.accessor.read()
            if seen:
                store = replace(store, requests=tuple(r for r in store.requests if r.key not in seen))
            request = find_request(store, user_id)
            if request is not None:
                logger.info(f"Found pairing request from {request.id} (code {request.code})")
                return request

            elapsed = self._clock() - start
            if elapsed >= timeout_seconds:
                raise WatchTimeoutError(
                    timeout_seconds,
                    remediation="Send a message to the bot, then run 'pairgate pairing watch' again",
                )

            polls += 1
            if self.progress_every and polls % self.progress_every == 0:
                logger.info(f"Still waiting for a pairing request... ({elapsed:.0f}s elapsed)")
            self._sleep(min(self.poll_interval, timeout_seconds - elapsed))
