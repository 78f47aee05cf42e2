"""Episode list state and the draft -> submit -> approve/reject workflow.

Status only moves along :data:`TRANSITIONS`; which of those moves a user may
attempt is decided by :func:`permitted_actions` from their roles and the
episode's last fetched status.  The controller never edits its episode list
locally after an action: it always re-fetches, so what it holds is the API's
latest view.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Union

import requests
import structlog

from coding_admin.api_client import ApiClient
from coding_admin.errors import ActionNotPermitted, CodingAdminError, EpisodeNotLoaded
from coding_admin.models import (
    Episode,
    EpisodeDraft,
    EpisodeFilters,
    EpisodePage,
    EpisodeStatus,
)
from coding_admin.session import Account, SessionContext

logger = structlog.get_logger(__name__)

ROLE_CODER = "Coder"
ROLE_REVIEWER = "Reviewer"

DEFAULT_APPROVE_NOTES = "Looks good"
DEFAULT_REJECT_NOTES = "Needs more detail"

EpisodeId = Union[int, str]


class EpisodeAction(str, Enum):
    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"
    QUERY = "query"
    VIEW_DIFF = "view_diff"
    REVERT = "revert"


TRANSITIONS: Dict[tuple, EpisodeStatus] = {
    (EpisodeStatus.DRAFT, EpisodeAction.SUBMIT): EpisodeStatus.SUBMITTED,
    (EpisodeStatus.SUBMITTED, EpisodeAction.APPROVE): EpisodeStatus.APPROVED,
    (EpisodeStatus.SUBMITTED, EpisodeAction.REJECT): EpisodeStatus.REJECTED,
}

# Statuses that can be reached but never left.
TERMINAL_STATUSES = frozenset(TRANSITIONS.values()) - {source for source, _ in TRANSITIONS}

# Role required for each gated action; the status-changing ones also need a
# transition out of the episode's current status.
ACTION_ROLES: Dict[EpisodeAction, str] = {
    EpisodeAction.SUBMIT: ROLE_CODER,
    EpisodeAction.QUERY: ROLE_CODER,
    EpisodeAction.APPROVE: ROLE_REVIEWER,
    EpisodeAction.REJECT: ROLE_REVIEWER,
    EpisodeAction.REVERT: ROLE_REVIEWER,
}
STATUS_ACTIONS = frozenset(action for _, action in TRANSITIONS)


def next_status(status: EpisodeStatus, action: EpisodeAction) -> Optional[EpisodeStatus]:
    """Status reached by applying ``action``; ``None`` when no transition exists."""

    return TRANSITIONS.get((status, action))


def permitted_actions(
    roles: Iterable[str], status: Optional[EpisodeStatus] = None
) -> FrozenSet[EpisodeAction]:
    """Actions a user holding ``roles`` may take on an episode in ``status``.

    With ``status=None`` only the status-independent actions are considered.
    """

    role_set = set(roles)
    actions = {EpisodeAction.VIEW_DIFF}
    for action, role in ACTION_ROLES.items():
        if role not in role_set:
            continue
        if action in STATUS_ACTIONS and (status is None or next_status(status, action) is None):
            continue
        actions.add(action)
    return frozenset(actions)


def authorize(
    roles: Iterable[str], action: EpisodeAction, status: Optional[EpisodeStatus] = None
) -> None:
    """Raise :class:`ActionNotPermitted` unless ``action`` is allowed."""

    roles = tuple(roles)
    if action not in permitted_actions(roles, status):
        raise ActionNotPermitted(action.value, status.label if status is not None else None, roles)


class EpisodeWorkflowController:
    """Owns the filtered episode list and runs gated status transitions."""

    def __init__(
        self,
        api: ApiClient,
        session: SessionContext,
        filters: Optional[EpisodeFilters] = None,
    ) -> None:
        self.api = api
        self.session = session
        self.filters = filters or EpisodeFilters()
        self.episodes: List[Episode] = []
        self.total = 0
        self.error: Optional[str] = None
        self.last_suggestion: Any = None
        session.subscribe(self._on_identity_change)

    # ------------------------------------------------------------------
    # List state
    # ------------------------------------------------------------------
    def refresh(self) -> List[Episode]:
        """Re-fetch the list for the current filters.

        Failures are kept in :attr:`error` for inline display rather than
        raised; the previously fetched episodes stay in place.
        """

        self.error = None
        try:
            data = self.api.call("episodes", params=self.filters.to_params())
            page = EpisodePage.from_response(data)
        except (CodingAdminError, requests.RequestException, ValueError) as exc:
            logger.warning("episode_list_failed", error=str(exc))
            self.error = str(exc)
            return self.episodes
        self.episodes = [episode for episode in page.items if self.filters.matches(episode)]
        self.total = page.total
        logger.info("episodes_listed", count=len(page.items), total=page.total)
        return self.episodes

    def set_filters(self, **changes: Any) -> EpisodeFilters:
        """Update filter or pagination fields and refresh when they changed."""

        merged = {**self.filters.model_dump(), **changes}
        filters = EpisodeFilters.model_validate(merged)
        if filters != self.filters:
            self.filters = filters
            self._auto_refresh()
        return self.filters

    def set_page(self, page: int) -> EpisodeFilters:
        return self.set_filters(page=page)

    def set_page_size(self, page_size: int) -> EpisodeFilters:
        return self.set_filters(page_size=page_size)

    def get(self, episode_id: EpisodeId) -> Episode:
        for episode in self.episodes:
            if str(episode.id) == str(episode_id):
                return episode
        raise EpisodeNotLoaded(episode_id)

    def available_actions(self, episode: Episode) -> FrozenSet[EpisodeAction]:
        return permitted_actions(self.session.roles, episode.status)

    def _auto_refresh(self) -> None:
        if self.session.can_call_api:
            self.refresh()

    def _on_identity_change(self, account: Optional[Account]) -> None:
        self._auto_refresh()

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------
    def suggest(self, draft: EpisodeDraft) -> Any:
        """Ask the API for suggested codes without persisting anything."""

        self.last_suggestion = self.api.call("episodes/suggest", draft.to_payload())
        return self.last_suggestion

    def create(self, draft: EpisodeDraft) -> Any:
        result = self.api.call("episodes", draft.to_payload())
        self.refresh()
        return result

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------
    def submit(self, episode_id: EpisodeId) -> None:
        self._transition(episode_id, EpisodeAction.SUBMIT)

    def approve(self, episode_id: EpisodeId, notes: str = DEFAULT_APPROVE_NOTES) -> None:
        self._transition(episode_id, EpisodeAction.APPROVE, {"notes": notes})

    def reject(self, episode_id: EpisodeId, notes: str = DEFAULT_REJECT_NOTES) -> None:
        self._transition(episode_id, EpisodeAction.REJECT, {"notes": notes})

    def _transition(
        self,
        episode_id: EpisodeId,
        action: EpisodeAction,
        params: Optional[Dict[str, str]] = None,
    ) -> None:
        episode = self.get(episode_id)
        authorize(self.session.roles, action, episode.status)
        logger.info(
            "episode_transition",
            episode_id=str(episode.id),
            action=action.value,
            from_status=episode.status.label,
        )
        try:
            self.api.call(f"episodes/{episode.id}/{action.value}", None, "POST", params=params)
        finally:
            self.refresh()


__all__ = [
    "DEFAULT_APPROVE_NOTES",
    "DEFAULT_REJECT_NOTES",
    "EpisodeAction",
    "EpisodeWorkflowController",
    "ACTION_ROLES",
    "ROLE_CODER",
    "ROLE_REVIEWER",
    "TERMINAL_STATUSES",
    "TRANSITIONS",
    "authorize",
    "next_status",
    "permitted_actions",
]
