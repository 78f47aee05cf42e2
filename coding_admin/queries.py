"""Clinician query drafting.

A query is posted once to ``episodes/{id}/queries``; the API forwards it to
the configured workflow webhook.  Nothing is retried or kept locally.
"""

from __future__ import annotations

from typing import Optional

import structlog

from coding_admin.api_client import ApiClient
from coding_admin.models import QueryDraft
from coding_admin.session import SessionContext
from coding_admin.workflow import EpisodeAction, EpisodeId, authorize

logger = structlog.get_logger(__name__)

QUERY_SENT_MESSAGE = "Query drafted and sent to Power Automate webhook (if configured)."


class QueryDrafter:
    def __init__(self, api: ApiClient, session: SessionContext) -> None:
        self.api = api
        self.session = session

    def create_query(
        self,
        episode_id: EpisodeId,
        to: Optional[str] = None,
        subject: Optional[str] = None,
        body: Optional[str] = None,
    ) -> str:
        """Send a query for ``episode_id`` and return the confirmation text."""

        overrides = {"to": to, "subject": subject, "body": body}
        draft = QueryDraft(**{key: value for key, value in overrides.items() if value is not None})
        return self.send(episode_id, draft)

    def send(self, episode_id: EpisodeId, draft: QueryDraft) -> str:
        authorize(self.session.roles, EpisodeAction.QUERY)
        self.api.call(f"episodes/{episode_id}/queries", draft.to_payload(), "POST")
        logger.info("query_sent", episode_id=str(episode_id), subject=draft.subject)
        return QUERY_SENT_MESSAGE


__all__ = ["QUERY_SENT_MESSAGE", "QueryDrafter"]
