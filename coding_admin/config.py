"""Client configuration helpers."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List, Optional, Tuple

BASE_SCOPES: Tuple[str, ...] = ("openid", "profile")

DEFAULT_API_BASE = "https://localhost:7249"
DEFAULT_REDIRECT_URI = "http://localhost:5173"
DEFAULT_TIMEOUT = 30.0

# Deployments built for the browser client spell every variable with this
# prefix; the bare name wins when both are set.
_LEGACY_PREFIX = "VITE_"


@dataclass(frozen=True)
class ClientSettings:
    """Resolved configuration for the coding client."""

    api_base: str = DEFAULT_API_BASE
    api_scope: str = ""
    bypass_auth: bool = False
    client_id: str = ""
    tenant_id: str = ""
    redirect_uri: str = DEFAULT_REDIRECT_URI
    bearer_token: Optional[str] = None
    bypass_roles: Tuple[str, ...] = field(default_factory=tuple)
    timeout: float = DEFAULT_TIMEOUT

    @property
    def authority(self) -> str:
        return f"https://login.microsoftonline.com/{self.tenant_id}"

    @property
    def login_scopes(self) -> List[str]:
        """Scopes requested when signing in."""

        scopes = list(BASE_SCOPES)
        if self.api_scope:
            scopes.append(self.api_scope)
        return scopes

    @property
    def api_scopes(self) -> List[str]:
        """Scopes requested for tokens attached to API calls."""

        if self.api_scope:
            return [self.api_scope]
        return list(BASE_SCOPES)

    @property
    def missing_scope_warning(self) -> bool:
        return not self.bypass_auth and not self.api_scope

    def url_for(self, path: str) -> str:
        return f"{self.api_base.rstrip('/')}/{path.lstrip('/')}"


def _env(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        value = os.getenv(_LEGACY_PREFIX + name)
    return value


def _env_flag(name: str) -> bool:
    return str(_env(name) or "").strip().lower() == "true"


def _get_float_env(name: str, default: float) -> float:
    raw = _env(name)
    if raw in (None, ""):
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be a number; got {raw!r}") from exc


def _split_roles(raw: Optional[str]) -> Tuple[str, ...]:
    if not raw:
        return ()
    return tuple(part.strip() for part in raw.split(",") if part.strip())


@lru_cache(maxsize=1)
def get_client_settings() -> ClientSettings:
    """Return the active client settings derived from the environment."""

    return ClientSettings(
        api_base=(_env("API_BASE") or DEFAULT_API_BASE).strip(),
        api_scope=(_env("API_SCOPE") or "").strip(),
        bypass_auth=_env_flag("BYPASS_AUTH"),
        client_id=(_env("AAD_CLIENT_ID") or "").strip(),
        tenant_id=(_env("AAD_TENANT_ID") or "").strip(),
        redirect_uri=(_env("REDIRECT_URI") or DEFAULT_REDIRECT_URI).strip(),
        bearer_token=(_env("API_BEARER_TOKEN") or "").strip() or None,
        bypass_roles=_split_roles(_env("BYPASS_ROLES")),
        timeout=_get_float_env("API_TIMEOUT", DEFAULT_TIMEOUT),
    )


__all__ = ["BASE_SCOPES", "ClientSettings", "get_client_settings"]
