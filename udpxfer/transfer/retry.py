"""
Retrying Request Client

Design Decision: Retransmission Policy
======================================

Options Considered:
1. Fixed timeout, fixed retry count
   - Simple, but hammers a congested or slow peer at a constant rate
2. Exponential backoff (timeout doubles per retry)
   - Recovers quickly from an isolated drop
   - Bounds retry storms under sustained loss
3. Adaptive RTO (RTT estimation, as TCP does)
   - Best latency, far more state than one request/response needs

Decision: Exponential backoff, no RTT estimation
- Attempt k waits base * 2**k (0.5s, 1s, 2s, 4s, 8s, 16s by default)
- At most max_retries + 1 sends, then RequestTimeoutError
- Optional jitter stretches each wait by a random fraction

A response is only accepted if `match` recognises it. Anything else that
arrives on the socket (a late duplicate from an earlier retry, a stray
datagram) is dropped and the wait continues with the time left.
"""

import asyncio
import logging
import random
from typing import Callable, Iterator, Optional, TypeVar

from .protocol import BASE_TIMEOUT, MAX_RETRIES
from .transport import Address, DatagramEndpoint

logger = logging.getLogger(__name__)

T = TypeVar('T')

# Returns the parsed response if it is the one we are waiting for, else None
ResponseMatcher = Callable[[bytes], Optional[T]]


class RequestTimeoutError(Exception):
    """No acceptable response after exhausting every retry."""

    def __init__(self, payload: bytes, attempts: int = 0):
        self.payload = payload
        self.attempts = attempts
        super().__init__(
            f"No response after {attempts} attempts to "
            f"{payload[:60].decode('ascii', errors='replace')!r}"
        )


def backoff_schedule(base_timeout: float = BASE_TIMEOUT,
                     max_retries: int = MAX_RETRIES) -> Iterator[float]:
    """Yield the wait for every attempt: base, 2*base, 4*base, ..."""
    for attempt in range(max_retries + 1):
        yield base_timeout * (2 ** attempt)


class RetryingRequester:
    """
    Sends one request at a time and waits for its matching response.

    The endpoint is owned by the caller; a requester never closes it.
    """

    def __init__(self, endpoint: DatagramEndpoint,
                 base_timeout: float = BASE_TIMEOUT,
                 max_retries: int = MAX_RETRIES,
                 jitter: float = 0.0):
        """
        Args:
            endpoint: Socket used for both sending and receiving
            base_timeout: Wait for the first attempt, in seconds
            max_retries: Retransmissions after the first send
            jitter: Extra random wait as a fraction of each timeout (0 = none)
        """
        self.endpoint = endpoint
        self.base_timeout = base_timeout
        self.max_retries = max_retries
        self.jitter = jitter

        # Statistics
        self.requests = 0
        self.retransmits = 0
        self.timeouts = 0
        self.discarded = 0

    def _wait_for(self, timeout: float) -> float:
        if self.jitter > 0:
            return timeout * (1 + random.uniform(0, self.jitter))
        return timeout

    async def _await_match(self, match: ResponseMatcher, timeout: float):
        """Wait up to `timeout` for a datagram accepted by `match`."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                return None

            received = await self.endpoint.receive(timeout=remaining)
            if received is None:
                return None

            data, addr = received
            response = match(data)
            if response is not None:
                return response

            self.discarded += 1
            logger.debug(f"Discarded unexpected datagram from {addr}")

    async def request(self, target: Address, payload: bytes, match: ResponseMatcher):
        """
        Send `payload` to `target` until `match` accepts a response.

        Args:
            target: (ip, port) of the peer
            payload: Request datagram
            match: Parses a received datagram, returning None to reject it

        Returns:
            Whatever `match` returned for the accepted datagram

        Raises:
            RequestTimeoutError: if every attempt timed out
        """
        self.requests += 1
        attempts = 0

        for timeout in backoff_schedule(self.base_timeout, self.max_retries):
            if attempts:
                self.retransmits += 1
                logger.debug(f"Retry {attempts}/{self.max_retries} to {target} "
                             f"(timeout {timeout:.2f}s)")
            attempts += 1

            self.endpoint.send(payload, target)
            response = await self._await_match(match, self._wait_for(timeout))
            if response is not None:
                return response

            self.timeouts += 1

        raise RequestTimeoutError(payload, attempts)
