"""Access-token acquisition bound to the signed-in account.

Tokens are never cached here; every outbound call asks the identity
provider again and the provider decides whether its own cache can answer
silently.  When it cannot, the broker runs exactly one interactive sign-in
and retries the silent path once for the account that sign-in produced.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Protocol, Sequence

import jwt
import structlog

from coding_admin.config import ClientSettings
from coding_admin.errors import (
    AuthRequired,
    ConsentRequired,
    IdentityProviderError,
    NotSignedIn,
)
from coding_admin.session import Account, InteractionStatus, SessionContext

logger = structlog.get_logger(__name__)

INTERACTION_CODES = {"interaction_required", "consent_required"}
# Popup sign-in errors that mean "try the full-page flow instead".
POPUP_FALLBACK_CODES = {"popup_window_error", "user_cancelled"}
INTERACTION_IN_PROGRESS = "interaction_in_progress"


@dataclass(frozen=True)
class AccessToken:
    access_token: str
    account: Optional[Account] = None
    scopes: Sequence[str] = field(default_factory=tuple)

    def __repr__(self) -> str:  # keep bearer material out of logs and tracebacks
        return f"AccessToken(account={self.account!r}, scopes={list(self.scopes)!r})"


class IdentityProvider(Protocol):
    """Capability consumed from the identity provider.

    Implementations raise :class:`IdentityProviderError` carrying the
    provider's ``error_code`` when a call cannot complete.
    """

    def acquire_token_silent(self, account: Account, scopes: Sequence[str]) -> AccessToken:
        ...

    def login_popup(self, scopes: Sequence[str]) -> Account:
        ...

    def login_redirect(self, scopes: Sequence[str]) -> Optional[Account]:
        ...

    def logout(self, account: Optional[Account]) -> None:
        ...


def _raise_classified(exc: IdentityProviderError) -> None:
    if isinstance(exc, (AuthRequired, ConsentRequired)):
        raise exc
    if exc.error_code == "consent_required":
        raise ConsentRequired(str(exc)) from exc
    raise AuthRequired(str(exc)) from exc


class TokenBroker:
    """Obtain access tokens and drive sign-in / sign-out for a session."""

    def __init__(
        self,
        provider: IdentityProvider,
        session: SessionContext,
        settings: ClientSettings,
    ) -> None:
        self.provider = provider
        self.session = session
        self.settings = settings

    def acquire(
        self,
        account: Optional[Account] = None,
        scopes: Optional[Sequence[str]] = None,
        *,
        allow_interaction: bool = True,
    ) -> AccessToken:
        """Return a token for ``account`` (default: the active account).

        Raises :class:`NotSignedIn` when there is no account,
        :class:`AuthRequired` / :class:`ConsentRequired` when the silent path
        needs the user and interaction is not allowed (or did not help), and
        lets every other provider failure through untouched.
        """

        account = account or self.session.active_account
        if account is None:
            raise NotSignedIn()
        scopes = list(scopes or self.settings.api_scopes)
        try:
            return self.provider.acquire_token_silent(account, scopes)
        except IdentityProviderError as exc:
            if exc.error_code not in INTERACTION_CODES:
                raise
            if not allow_interaction:
                _raise_classified(exc)
            logger.info("token_interaction_required", error_code=exc.error_code, scopes=scopes)

        self._interactive_login(scopes)
        retry_account = self.session.active_account
        if retry_account is None:
            raise NotSignedIn()
        try:
            return self.provider.acquire_token_silent(retry_account, scopes)
        except IdentityProviderError as exc:
            if exc.error_code not in INTERACTION_CODES:
                raise
            _raise_classified(exc)

    def _interactive_login(self, scopes: List[str]) -> None:
        self.session.interaction_status = InteractionStatus.ACQUIRE_TOKEN
        try:
            account = self.provider.login_popup(scopes)
        finally:
            self.session.interaction_status = InteractionStatus.NONE
        if account is not None:
            self.session.on_login_success(account)

    def sign_in(self) -> Optional[Account]:
        """Interactive sign-in: popup first, full-page redirect as fallback.

        Returns ``None`` without doing anything under bypass or while another
        interaction is already running.
        """

        if self.settings.bypass_auth or self.session.is_busy:
            return None
        scopes = self.settings.login_scopes
        self.session.interaction_status = InteractionStatus.LOGIN
        try:
            try:
                account = self.provider.login_popup(scopes)
            except IdentityProviderError as exc:
                if exc.error_code in POPUP_FALLBACK_CODES:
                    logger.info("sign_in_fallback_redirect", error_code=exc.error_code)
                    account = self.provider.login_redirect(scopes)
                elif exc.error_code == INTERACTION_IN_PROGRESS:
                    return None
                else:
                    logger.warning("sign_in_failed", error_code=exc.error_code, detail=str(exc))
                    raise
        finally:
            self.session.interaction_status = InteractionStatus.NONE
        if account is not None:
            self.session.on_login_success(account)
        return account

    def sign_out(self) -> None:
        """Best-effort sign-out; provider failures are logged, never raised."""

        if self.settings.bypass_auth:
            return
        account = self.session.active_account
        self.session.interaction_status = InteractionStatus.LOGOUT
        try:
            self.provider.logout(account)
        except Exception:
            logger.warning("sign_out_cleanup_failed", exc_info=True)
        finally:
            self.session.interaction_status = InteractionStatus.NONE
            self.session.remove_account(account)


class StaticTokenProvider:
    """Identity provider serving one pre-issued bearer token.

    Roles come from the token's ``roles`` claim, read without signature
    verification; the API remains the authority on whether the token is valid.
    """

    def __init__(self, token: str) -> None:
        if not token:
            raise ValueError("a bearer token is required")
        self._token = token
        claims = self._claims(token)
        self.account = Account(
            username=self._username(claims),
            home_account_id="static",
            id_token_claims=claims,
        )

    @staticmethod
    def _claims(token: str) -> dict:
        try:
            return jwt.decode(token, options={"verify_signature": False})
        except jwt.PyJWTError:
            return {}

    @staticmethod
    def _username(claims: dict) -> str:
        for key in ("preferred_username", "upn", "email", "name", "sub"):
            value = claims.get(key)
            if isinstance(value, str) and value:
                return value
        return "api-token"

    def acquire_token_silent(self, account: Account, scopes: Sequence[str]) -> AccessToken:
        return AccessToken(access_token=self._token, account=self.account, scopes=tuple(scopes))

    def login_popup(self, scopes: Sequence[str]) -> Account:
        raise AuthRequired("A static bearer token cannot sign in interactively.")

    def login_redirect(self, scopes: Sequence[str]) -> Optional[Account]:
        raise AuthRequired("A static bearer token cannot sign in interactively.")

    def logout(self, account: Optional[Account]) -> None:
        return None


__all__ = [
    "AccessToken",
    "IdentityProvider",
    "StaticTokenProvider",
    "TokenBroker",
]
