"""Signed-in identity state passed explicitly to the broker and controllers.

The browser client read the active account from a process-wide identity
cache.  Here the same state lives on a :class:`SessionContext` instance so
callers (and tests) decide which session a component sees.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from threading import Lock
from typing import Any, Callable, List, Mapping, Optional, Tuple

import structlog

logger = structlog.get_logger(__name__)

BYPASS_USERNAME = "dev-bypass"


class InteractionStatus(str, Enum):
    """What the identity provider is currently doing with the user."""

    NONE = "none"
    LOGIN = "login"
    LOGOUT = "logout"
    ACQUIRE_TOKEN = "acquireToken"


@dataclass(frozen=True)
class Account:
    """An opaque signed-in identity and the claims from its ID token."""

    username: str
    home_account_id: str = ""
    id_token_claims: Mapping[str, Any] = field(default_factory=dict)

    @property
    def roles(self) -> Tuple[str, ...]:
        roles = self.id_token_claims.get("roles") if self.id_token_claims else None
        if not isinstance(roles, (list, tuple)):
            return ()
        return tuple(str(role) for role in roles)

    def has_role(self, role: str) -> bool:
        return role in self.roles


IdentityListener = Callable[[Optional[Account]], None]


class SessionContext:
    """Tracks signed-in accounts, the active one and interaction status."""

    def __init__(self, *, bypass: bool = False, bypass_roles: Tuple[str, ...] = ()) -> None:
        self.bypass = bypass
        self._bypass_account = Account(
            username=BYPASS_USERNAME,
            id_token_claims={"roles": list(bypass_roles)},
        )
        self._accounts: List[Account] = []
        self._active: Optional[Account] = None
        self._listeners: List[IdentityListener] = []
        self._lock = Lock()
        self.interaction_status = InteractionStatus.NONE

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    @property
    def accounts(self) -> List[Account]:
        with self._lock:
            return list(self._accounts)

    @property
    def active_account(self) -> Optional[Account]:
        """First signed-in account, else the explicitly selected one."""

        with self._lock:
            if self._accounts:
                return self._accounts[0]
            return self._active

    @property
    def identity(self) -> Optional[Account]:
        """Account whose roles gate the UI; the dev identity under bypass."""

        account = self.active_account
        if account is None and self.bypass:
            return self._bypass_account
        return account

    @property
    def roles(self) -> Tuple[str, ...]:
        identity = self.identity
        return identity.roles if identity else ()

    def has_role(self, role: str) -> bool:
        return role in self.roles

    @property
    def is_busy(self) -> bool:
        return self.interaction_status is not InteractionStatus.NONE

    @property
    def can_call_api(self) -> bool:
        return self.bypass or self.active_account is not None

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def subscribe(self, listener: IdentityListener) -> None:
        """Register ``listener`` to be called whenever the active identity changes."""

        self._listeners.append(listener)

    def set_active_account(self, account: Optional[Account]) -> None:
        with self._lock:
            previous = self._accounts[0] if self._accounts else self._active
            self._active = account
            if account is not None and account not in self._accounts:
                self._accounts.append(account)
            current = self._accounts[0] if self._accounts else self._active
        if current != previous:
            self._notify(current)

    def on_login_success(self, account: Account) -> None:
        """Login event hook: the most recent login becomes the active account."""

        with self._lock:
            previous = self._accounts[0] if self._accounts else self._active
            if account in self._accounts:
                self._accounts.remove(account)
            self._accounts.insert(0, account)
            self._active = account
        logger.info("login_succeeded", username=account.username)
        if account != previous:
            self._notify(account)

    def remove_account(self, account: Optional[Account]) -> None:
        with self._lock:
            previous = self._accounts[0] if self._accounts else self._active
            if account is None:
                self._accounts.clear()
                self._active = None
            else:
                self._accounts = [a for a in self._accounts if a != account]
                if self._active == account:
                    self._active = None
            current = self._accounts[0] if self._accounts else self._active
        if current != previous:
            self._notify(current)

    def _notify(self, account: Optional[Account]) -> None:
        for listener in list(self._listeners):
            listener(account)


__all__ = ["Account", "BYPASS_USERNAME", "InteractionStatus", "SessionContext"]
