"""In-memory authentication state: single-use URL keys and OAuth nonces.

Both tables live for the lifetime of the process and are shared across
request threads, so they sit behind one owner with one lock. Callers only
get add and consume operations.
"""

import logging
import threading
from collections import OrderedDict
from typing import Optional

from entities import UrlKey, UrlKeyType, utc_now
from error_handler import NotFoundError, UnauthorizedError, InvalidInputError
from security_utils import URL_KEY_SIZE, get_crypt_rand_key

logger = logging.getLogger(__name__)

OAUTH_STATE_SIZE = 32
OAUTH_STATE_PREFIXES = ("signup_", "login_", "add_")


class AuthStateStore:
    """Thread-safe owner of the UrlKey table and the OAuth open-state list.

    The OAuth list is bounded: once ``max_oauth_states`` nonces are open the
    least recently issued one is evicted.
    """

    def __init__(self, max_oauth_states: int = 1000):
        self._lock = threading.Lock()
        self._url_keys: dict[str, UrlKey] = {}
        self._oauth_states: OrderedDict[str, None] = OrderedDict()
        self._max_oauth_states = max(1, max_oauth_states)

    # ─── URL keys ────────────────────────────────────────────────────────

    def add_url_key(self, key_type: UrlKeyType, user_id: Optional[int] = None) -> UrlKey:
        """Generate and register a fresh single-use key pair."""
        if key_type == UrlKeyType.PASSWORD_RESET and user_id is None:
            raise InvalidInputError("A password reset key needs a user id")
        with self._lock:
            url = get_crypt_rand_key(URL_KEY_SIZE)
            while url in self._url_keys:
                url = get_crypt_rand_key(URL_KEY_SIZE)
            url_key = UrlKey(
                url=url,
                key=get_crypt_rand_key(URL_KEY_SIZE),
                type=key_type,
                user_id=user_id,
                generated=utc_now(),
            )
            self._url_keys[url] = url_key
        logger.debug("Registered %s url key", key_type.value)
        return url_key

    def get_url_key(self, url: str) -> UrlKey:
        """Look up a live key by its url token without consuming it."""
        with self._lock:
            url_key = self._url_keys.get(url)
        if url_key is None:
            raise NotFoundError("Unknown or expired link")
        return url_key

    def consume_url_key(self, url: str, key: str) -> UrlKey:
        """Validate url and key together; on success the record is deleted."""
        with self._lock:
            url_key = self._url_keys.get(url)
            if url_key is None:
                raise NotFoundError("Unknown or expired link")
            if not key or key != url_key.key:
                raise UnauthorizedError("Invalid key")
            del self._url_keys[url]
        return url_key

    def has_url_key(self, key_type: UrlKeyType) -> bool:
        with self._lock:
            return any(k.type == key_type for k in self._url_keys.values())

    # ─── OAuth states ────────────────────────────────────────────────────

    def add_oauth_state(self, prefix: str) -> str:
        """Issue a new nonce that starts with one of the flow prefixes."""
        if prefix not in OAUTH_STATE_PREFIXES:
            raise InvalidInputError(f"Unknown OAuth flow {prefix!r}")
        state = prefix + get_crypt_rand_key(OAUTH_STATE_SIZE)
        with self._lock:
            self._oauth_states[state] = None
            while len(self._oauth_states) > self._max_oauth_states:
                evicted, _ = self._oauth_states.popitem(last=False)
                logger.debug("Evicted stale OAuth state %s...", evicted[:12])
        return state

    def consume_oauth_state(self, state: str) -> str:
        """Remove a nonce and return its flow prefix.

        Raises:
            UnauthorizedError: The nonce was never issued, was already used
                or has been evicted.
        """
        with self._lock:
            if state not in self._oauth_states:
                raise UnauthorizedError("Invalid OAuth state")
            del self._oauth_states[state]
        for prefix in OAUTH_STATE_PREFIXES:
            if state.startswith(prefix):
                return prefix
        raise UnauthorizedError("Invalid OAuth state")

    @property
    def oauth_state_count(self) -> int:
        with self._lock:
            return len(self._oauth_states)
