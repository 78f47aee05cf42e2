"""Exception hierarchy for the coding client."""

from __future__ import annotations

from typing import Iterable, Optional


class CodingAdminError(Exception):
    """Base class for all client failures."""


class NotSignedIn(CodingAdminError):
    """Raised when an authorized call is attempted without an active account."""

    def __init__(self, message: str = "Not signed in.") -> None:
        super().__init__(message)


class IdentityProviderError(CodingAdminError):
    """Failure reported by the identity provider, tagged with its error code."""

    def __init__(self, error_code: str, message: str = "") -> None:
        self.error_code = error_code
        super().__init__(message or error_code)


class InteractionRequired(IdentityProviderError):
    """Silent token acquisition cannot proceed without the user."""


class AuthRequired(InteractionRequired):
    def __init__(self, message: str = "") -> None:
        super().__init__("interaction_required", message)


class ConsentRequired(InteractionRequired):
    def __init__(self, message: str = "") -> None:
        super().__init__("consent_required", message)


class HttpError(CodingAdminError):
    """Non-2xx response from the coding API."""

    def __init__(self, status: int, status_text: str = "", body_text: str = "") -> None:
        self.status = status
        self.status_text = status_text
        self.body_text = body_text
        message = f"{status} {status_text}"
        if body_text:
            message = f"{message}: {body_text}"
        super().__init__(message)


class NoDiffLoaded(CodingAdminError):
    """Revert requested before a code diff was loaded."""

    def __init__(self, message: str = "No code diff loaded.") -> None:
        super().__init__(message)


class ActionNotPermitted(CodingAdminError):
    """Workflow action refused by role or status gating."""

    def __init__(self, action: str, status: Optional[object] = None, roles: Iterable[str] = ()) -> None:
        self.action = action
        self.status = status
        self.roles = tuple(roles)
        detail = f"Action '{action}' is not permitted"
        if status is not None:
            detail += f" for status {status}"
        detail += f" with roles {list(self.roles)}"
        super().__init__(detail)


class EpisodeNotLoaded(CodingAdminError, LookupError):
    """Transition requested for an episode missing from the latest list."""

    def __init__(self, episode_id: object) -> None:
        self.episode_id = episode_id
        super().__init__(f"Episode {episode_id} is not in the current list")


__all__ = [
    "ActionNotPermitted",
    "AuthRequired",
    "CodingAdminError",
    "ConsentRequired",
    "EpisodeNotLoaded",
    "HttpError",
    "IdentityProviderError",
    "InteractionRequired",
    "NoDiffLoaded",
    "NotSignedIn",
]
