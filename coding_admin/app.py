"""Composition root wiring session, broker, API client and controllers."""

from __future__ import annotations

from typing import Optional

import requests
import structlog

from coding_admin.api_client import ApiClient
from coding_admin.config import ClientSettings, get_client_settings
from coding_admin.queries import QueryDrafter
from coding_admin.reconciler import CodeDiffReconciler
from coding_admin.session import Account, SessionContext
from coding_admin.token_broker import IdentityProvider, StaticTokenProvider, TokenBroker
from coding_admin.workflow import EpisodeWorkflowController

logger = structlog.get_logger(__name__)


class CodingAdmin:
    """One signed-in user's view of the coding service."""

    def __init__(
        self,
        settings: ClientSettings,
        provider: Optional[IdentityProvider] = None,
        *,
        http: Optional[requests.Session] = None,
        session: Optional[SessionContext] = None,
    ) -> None:
        if provider is None and not settings.bypass_auth:
            raise ValueError("an identity provider is required unless BYPASS_AUTH is true")
        self.settings = settings
        self.session = session or SessionContext(
            bypass=settings.bypass_auth,
            bypass_roles=settings.bypass_roles,
        )
        self.broker = TokenBroker(provider, self.session, settings) if provider is not None else None
        self.api = ApiClient(settings, self.session, self.broker, http=http)
        self.workflow = EpisodeWorkflowController(self.api, self.session)
        self.diffs = CodeDiffReconciler(self.api, self.session, self.workflow)
        self.queries = QueryDrafter(self.api, self.session)
        if settings.missing_scope_warning:
            logger.warning(
                "api_scope_not_configured",
                detail="API_SCOPE is not set. Login will work with OIDC, but API calls may fail.",
            )

    def sign_in(self) -> Optional[Account]:
        if self.broker is None:
            return None
        return self.broker.sign_in()

    def sign_out(self) -> None:
        if self.broker is not None:
            self.broker.sign_out()

    def start(self) -> None:
        """Load the first page once the session can reach the API."""

        if self.session.can_call_api:
            self.workflow.refresh()


def build_admin(
    settings: Optional[ClientSettings] = None,
    provider: Optional[IdentityProvider] = None,
) -> CodingAdmin:
    """Build a :class:`CodingAdmin` from settings, signing in a static token if configured."""

    settings = settings or get_client_settings()
    if provider is None and settings.bearer_token and not settings.bypass_auth:
        provider = StaticTokenProvider(settings.bearer_token)
    session = SessionContext(bypass=settings.bypass_auth, bypass_roles=settings.bypass_roles)
    if isinstance(provider, StaticTokenProvider):
        session.on_login_success(provider.account)
    return CodingAdmin(settings, provider, session=session)


__all__ = ["CodingAdmin", "build_admin"]
