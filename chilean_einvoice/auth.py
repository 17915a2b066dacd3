import datetime as _dt
import logging
import threading
from typing import Callable, Optional, Protocol, Tuple

from .errors import TransportError
from .utils import mask_token, now_santiago

logger = logging.getLogger(__name__)

Handshake = Callable[[], str]
Clock = Callable[[], _dt.datetime]


class TokenProvider(Protocol):
    def get_token(self) -> str:
        ...


class _Flight:
    """One in-progress refresh; followers wait on ``done``."""

    def __init__(self):
        self.done = threading.Event()
        self.token: Optional[str] = None
        self.error: Optional[BaseException] = None


class SessionCache:
    """Caches the SII session token and refreshes it at most once at a time.

    The slot is a single ``(token, expires_at)`` tuple so readers never see a
    token paired with another token's expiry. A failed refresh leaves the slot
    untouched and is reported to every caller that waited on it.
    """

    def __init__(
        self,
        handshake: Handshake,
        ttl: int = 1800,
        clock: Optional[Clock] = None,
        wait_timeout: Optional[float] = None,
    ):
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        self._handshake = handshake
        self._ttl = _dt.timedelta(seconds=ttl)
        self._clock = clock or now_santiago
        self._slot: Optional[Tuple[str, _dt.datetime]] = None
        self._flight: Optional[_Flight] = None
        self._lock = threading.Lock()
        self._wait_timeout = wait_timeout

    @classmethod
    def from_clients(
        cls,
        seed_client,
        token_exchanger,
        ttl: int = 1800,
        clock: Optional[Clock] = None,
        wait_timeout: Optional[float] = None,
    ) -> "SessionCache":
        def handshake() -> str:
            return token_exchanger.exchange_seed(seed_client.get_seed())

        return cls(handshake, ttl=ttl, clock=clock, wait_timeout=wait_timeout)

    @property
    def expires_at(self) -> Optional[_dt.datetime]:
        slot = self._slot
        return slot[1] if slot else None

    def get_token(self) -> str:
        with self._lock:
            slot = self._slot
            if slot is not None and self._clock() < slot[1]:
                return slot[0]
            flight = self._flight
            leader = flight is None
            if leader:
                flight = self._flight = _Flight()

        if not leader:
            if not flight.done.wait(self._wait_timeout):
                raise TransportError(f"Timed out after {self._wait_timeout}s waiting for the SII token refresh")
            if flight.error is not None:
                raise flight.error
            return flight.token

        try:
            token = self._handshake()
            expires_at = self._clock() + self._ttl
            with self._lock:
                self._slot = (token, expires_at)
            flight.token = token
            logger.info("SII session token %s valid until %s", mask_token(token), expires_at.isoformat())
            return token
        except BaseException as exc:
            flight.error = exc
            logger.warning("SII token refresh failed: %s", exc)
            raise
        finally:
            with self._lock:
                self._flight = None
            flight.done.set()

    def invalidate(self) -> None:
        with self._lock:
            self._slot = None
