from typing import Callable, Iterator, List, Optional, Sequence, Tuple

import pytest

from coding_admin.app import CodingAdmin
from coding_admin.config import ClientSettings, get_client_settings
from coding_admin.errors import IdentityProviderError
from coding_admin.session import Account
from coding_admin.token_broker import AccessToken

API = "https://api.test"
API_SCOPE = "api://coding-api/access_as_user"

_ENV_VARS = (
    "API_BASE",
    "API_SCOPE",
    "BYPASS_AUTH",
    "AAD_CLIENT_ID",
    "AAD_TENANT_ID",
    "REDIRECT_URI",
    "API_BEARER_TOKEN",
    "BYPASS_ROLES",
    "API_TIMEOUT",
)


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
        monkeypatch.delenv(f"VITE_{name}", raising=False)
    get_client_settings.cache_clear()
    yield
    get_client_settings.cache_clear()


def make_account(username: str, *roles: str) -> Account:
    return Account(username=username, home_account_id=f"{username}-id", id_token_claims={"roles": list(roles)})


class FakeIdentityProvider:
    """Scripted identity provider recording every call."""

    def __init__(self) -> None:
        self.calls: List[Tuple[str, Optional[str], Tuple[str, ...]]] = []
        self.silent_errors: List[str] = []
        self.popup_error: Optional[str] = None
        self.redirect_error: Optional[str] = None
        self.logout_error: Optional[Exception] = None
        self.login_account = make_account("popup@nhs.test", "Coder")

    def acquire_token_silent(self, account: Account, scopes: Sequence[str]) -> AccessToken:
        self.calls.append(("silent", account.username, tuple(scopes)))
        if self.silent_errors:
            raise IdentityProviderError(self.silent_errors.pop(0))
        return AccessToken(f"token-{account.username}", account, tuple(scopes))

    def login_popup(self, scopes: Sequence[str]) -> Account:
        self.calls.append(("popup", None, tuple(scopes)))
        if self.popup_error:
            raise IdentityProviderError(self.popup_error)
        return self.login_account

    def login_redirect(self, scopes: Sequence[str]) -> Optional[Account]:
        self.calls.append(("redirect", None, tuple(scopes)))
        if self.redirect_error:
            raise IdentityProviderError(self.redirect_error)
        return self.login_account

    def logout(self, account: Optional[Account]) -> None:
        self.calls.append(("logout", account.username if account else None, ()))
        if self.logout_error:
            raise self.logout_error

    def kinds(self) -> List[str]:
        return [call[0] for call in self.calls]


@pytest.fixture
def settings() -> ClientSettings:
    return ClientSettings(api_base=API, api_scope=API_SCOPE)


@pytest.fixture
def bypass_settings() -> ClientSettings:
    return ClientSettings(api_base=API, bypass_auth=True, bypass_roles=("Coder", "Reviewer"))


@pytest.fixture
def provider() -> FakeIdentityProvider:
    return FakeIdentityProvider()


@pytest.fixture
def make_admin(settings, provider, requests_mock) -> Callable[..., CodingAdmin]:
    """Build a signed-in client whose account holds ``roles``.

    Listing returns an empty page unless a test registers its own response.
    """

    requests_mock.get(f"{API}/episodes", json=[])

    def _make(*roles: str, username: str = "user@nhs.test") -> CodingAdmin:
        admin = CodingAdmin(settings, provider)
        admin.session.on_login_success(make_account(username, *roles))
        requests_mock.reset_mock()
        return admin

    return _make


def episode(episode_id: int, status: int, **extra) -> dict:
    payload = {
        "id": episode_id,
        "patientName": f"Patient {episode_id}",
        "admissionDate": "2024-01-15T09:30:00Z",
        "specialty": "Respiratory Medicine",
        "status": status,
    }
    payload.update(extra)
    return payload
