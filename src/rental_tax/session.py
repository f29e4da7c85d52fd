"""Authentication session state and its persistence across restarts."""

import logging
import time
from collections.abc import Callable
from enum import Enum
from typing import Protocol

from .models import TokenGrant, UserInfo

logger = logging.getLogger(__name__)

TOKEN_KEY = "auth.token"
EMAIL_KEY = "auth.email"
EXPIRES_AT_KEY = "auth.expires_at"
SPREADSHEET_ID_KEY = "spreadsheet_id"


class KeyValueStore(Protocol):
    """Host-provided string key/value storage (see :class:`rental_tax.db.Database`)."""

    def get_config(self, key: str) -> str | None:
        ...

    def set_config(self, key: str, value: str) -> None:
        ...

    def delete_config(self, key: str) -> None:
        ...


class RestoreResult(str, Enum):
    """Outcome of restoring a persisted session."""

    NONE = "none"
    ACTIVE = "active"
    EXPIRED = "expired"


def now_ms(clock: Callable[[], float] = time.time) -> int:
    return int(clock() * 1000)


class AuthSession:
    """
    Access token, user email and token expiry.

    Only the token, email and expiry timestamp are persisted, and only when
    ``persist`` is enabled. The spreadsheet id is always remembered since it
    carries no credential.
    """

    def __init__(
        self,
        store: KeyValueStore,
        persist: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.persist = persist
        self.clock = clock
        self.token: str | None = None
        self.email: str | None = None
        self.expires_at: int | None = None  # epoch milliseconds

    @property
    def spreadsheet_id(self) -> str | None:
        return self.store.get_config(SPREADSHEET_ID_KEY)

    @spreadsheet_id.setter
    def spreadsheet_id(self, value: str | None) -> None:
        if value:
            self.store.set_config(SPREADSHEET_ID_KEY, value)
        else:
            self.store.delete_config(SPREADSHEET_ID_KEY)

    def now_ms(self) -> int:
        return now_ms(self.clock)

    def start(self, grant: TokenGrant, user: UserInfo) -> None:
        """Begin a session from a freshly issued token."""
        self.token = grant.token
        self.email = user.email
        self.expires_at = self.now_ms() + grant.expires_in * 1000
        if self.persist:
            self.store.set_config(TOKEN_KEY, self.token)
            self.store.set_config(EXPIRES_AT_KEY, str(self.expires_at))
            if self.email:
                self.store.set_config(EMAIL_KEY, self.email)
        logger.info(f"Signed in as {self.email or 'unknown user'}")

    def restore(self) -> RestoreResult:
        """
        Rebuild the session from the store.

        A persisted session that already expired is wiped and reported as
        EXPIRED so the caller can show the session-expired notice.
        """
        token = self.store.get_config(TOKEN_KEY)
        raw_expiry = self.store.get_config(EXPIRES_AT_KEY)
        if not token:
            return RestoreResult.NONE

        try:
            expires_at = int(raw_expiry) if raw_expiry else None
        except ValueError:
            logger.warning(f"Ignoring unreadable session expiry {raw_expiry!r}")
            expires_at = None

        if expires_at is None or self.now_ms() >= expires_at:
            logger.info("Persisted session has expired")
            self.clear()
            return RestoreResult.EXPIRED

        self.token = token
        self.email = self.store.get_config(EMAIL_KEY)
        self.expires_at = expires_at
        logger.debug(f"Restored session for {self.email or 'unknown user'}")
        return RestoreResult.ACTIVE

    def is_expired(self) -> bool:
        """True if a token was issued and its expiry has passed."""
        return self.expires_at is not None and self.now_ms() >= self.expires_at

    @property
    def is_authenticated(self) -> bool:
        return self.token is not None and not self.is_expired()

    def clear(self) -> None:
        """Forget the token in memory and in the store."""
        self.token = None
        self.email = None
        self.expires_at = None
        for key in (TOKEN_KEY, EMAIL_KEY, EXPIRES_AT_KEY):
            self.store.delete_config(key)
