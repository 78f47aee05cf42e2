"""Code diff loading, upload comparison and revert."""

from __future__ import annotations

from typing import Any, Optional

import structlog

from coding_admin.api_client import ApiClient
from coding_admin.errors import NoDiffLoaded
from coding_admin.models import DiffResult
from coding_admin.session import SessionContext
from coding_admin.workflow import EpisodeAction, EpisodeId, EpisodeWorkflowController, authorize

logger = structlog.get_logger(__name__)


def normalize_diff(payload: Any) -> DiffResult:
    """Return the canonical :class:`DiffResult` for a raw diff payload.

    Applying it to its own output (``to_payload()``) yields an equal result.
    """

    if isinstance(payload, DiffResult):
        return payload
    return DiffResult.model_validate(payload or {})


class CodeDiffReconciler:
    """Holds the most recently loaded diff and the last upload comparison."""

    def __init__(
        self,
        api: ApiClient,
        session: SessionContext,
        workflow: EpisodeWorkflowController,
    ) -> None:
        self.api = api
        self.session = session
        self.workflow = workflow
        self.diff: Optional[DiffResult] = None
        self.diff_episode_id: Optional[EpisodeId] = None
        self.upload_diff: Optional[DiffResult] = None

    def load_diff(self, episode_id: EpisodeId) -> DiffResult:
        """Fetch the latest re-suggestion diff for ``episode_id``."""

        data = self.api.call(f"episodes/{episode_id}/code-diff")
        diff = normalize_diff(data)
        self.diff_episode_id = episode_id
        self.diff = diff
        logger.info(
            "code_diff_loaded",
            episode_id=str(episode_id),
            dx_added=len(diff.deltas.dx_added),
            dx_removed=len(diff.deltas.dx_removed),
            revertible=diff.revertible,
        )
        return diff

    def close_diff(self) -> None:
        self.diff = None
        self.diff_episode_id = None

    def compare_upload(
        self,
        file_name: str,
        content: Optional[bytes],
        codes: Optional[str] = None,
        *,
        content_type: str = "application/octet-stream",
    ) -> DiffResult:
        """Compare coder-supplied codes against the system's for an uploaded note.

        ``codes`` is passed through untouched (JSON or CSV); only the API
        interprets it.
        """

        if content is None:
            raise ValueError("Please choose a file first.")
        data = self.api.upload(
            "episodes/compare-upload",
            file_name,
            content,
            codes,
            content_type=content_type,
        )
        self.upload_diff = normalize_diff(data)
        return self.upload_diff

    def revert(self) -> None:
        """Restore the "old" codes of the loaded diff, then refresh the list."""

        if self.diff is None or self.diff_episode_id is None:
            raise NoDiffLoaded()
        if not self.diff.audit_id:
            raise NoDiffLoaded("Loaded code diff has no audit id to revert to.")
        authorize(self.session.roles, EpisodeAction.REVERT)
        episode_id = self.diff_episode_id
        self.api.call(
            f"episodes/{episode_id}/revert",
            None,
            "POST",
            params={"auditId": self.diff.audit_id},
        )
        logger.info("codes_reverted", episode_id=str(episode_id), audit_id=self.diff.audit_id)
        self.close_diff()
        self.workflow.refresh()


__all__ = ["CodeDiffReconciler", "normalize_diff"]
