import json
from urllib.parse import parse_qs, urlparse

import pytest

from conftest import API, episode
from coding_admin.errors import ActionNotPermitted, HttpError, NoDiffLoaded

LIVE_DIFF = {
    "Dx": {
        "Old": [{"Code": "J18.9", "Description": "Pneumonia, unspecified", "IsPrimary": True}],
        "New": [{"Code": "J18.1", "Description": "Lobar pneumonia", "IsPrimary": True}],
    },
    "Px": {"Old": [], "New": []},
    "AuditId": "audit-3",
}


def test_load_diff_normalises_pascal_payload(make_admin, requests_mock):
    admin = make_admin()
    requests_mock.get(f"{API}/episodes/4/code-diff", json=LIVE_DIFF)

    diff = admin.diffs.load_diff(4)

    assert diff.dx.old[0].code == "J18.9"
    assert diff.dx.old[0].is_primary is True
    assert diff.dx.new[0].description == "Lobar pneumonia"
    assert diff.deltas.dx_added == ["J18.1"]
    assert diff.audit_id == "audit-3"
    assert admin.diffs.diff is diff
    assert admin.diffs.diff_episode_id == 4


def test_viewing_a_diff_needs_a_session(settings, provider, requests_mock):
    from coding_admin.app import CodingAdmin
    from coding_admin.errors import NotSignedIn

    admin = CodingAdmin(settings, provider)

    with pytest.raises(NotSignedIn):
        admin.diffs.load_diff(4)
    assert requests_mock.call_count == 0


def test_revert_without_diff_makes_no_call(make_admin, requests_mock):
    admin = make_admin("Reviewer")

    with pytest.raises(NoDiffLoaded):
        admin.diffs.revert()

    assert requests_mock.call_count == 0


def test_revert_needs_an_audit_id(make_admin, requests_mock):
    admin = make_admin("Reviewer")
    requests_mock.get(f"{API}/episodes/4/code-diff", json={"Dx": LIVE_DIFF["Dx"]})
    admin.diffs.load_diff(4)
    requests_mock.reset_mock()

    with pytest.raises(NoDiffLoaded):
        admin.diffs.revert()
    assert requests_mock.call_count == 0


def test_revert_requires_reviewer(make_admin, requests_mock):
    admin = make_admin("Coder")
    requests_mock.get(f"{API}/episodes/4/code-diff", json=LIVE_DIFF)
    revert = requests_mock.post(f"{API}/episodes/4/revert", status_code=204)
    admin.diffs.load_diff(4)

    with pytest.raises(ActionNotPermitted):
        admin.diffs.revert()
    assert not revert.called
    assert admin.diffs.diff is not None


def test_revert_posts_audit_id_refreshes_and_clears(make_admin, requests_mock):
    admin = make_admin("Reviewer")
    requests_mock.get(f"{API}/episodes/4/code-diff", json=LIVE_DIFF)
    requests_mock.get(f"{API}/episodes", json=[episode(4, 1)])
    revert = requests_mock.post(f"{API}/episodes/4/revert", status_code=204)
    admin.diffs.load_diff(4)
    requests_mock.reset_mock()

    admin.diffs.revert()

    assert revert.last_request.body is None
    assert parse_qs(urlparse(revert.last_request.url).query) == {"auditId": ["audit-3"]}
    assert [r.method for r in requests_mock.request_history] == ["POST", "GET"]
    assert admin.diffs.diff is None
    assert admin.diffs.diff_episode_id is None
    assert [e.id for e in admin.workflow.episodes] == [4]


def test_failed_revert_keeps_the_diff(make_admin, requests_mock):
    admin = make_admin("Reviewer")
    requests_mock.get(f"{API}/episodes/4/code-diff", json=LIVE_DIFF)
    requests_mock.post(f"{API}/episodes/4/revert", status_code=404, reason="Not Found")
    admin.diffs.load_diff(4)

    with pytest.raises(HttpError):
        admin.diffs.revert()
    assert admin.diffs.diff is not None


def test_close_diff(make_admin, requests_mock):
    admin = make_admin()
    requests_mock.get(f"{API}/episodes/4/code-diff", json=LIVE_DIFF)
    admin.diffs.load_diff(4)

    admin.diffs.close_diff()

    assert admin.diffs.diff is None


def test_upload_comparison_keeps_coder_codes_as_old(make_admin, requests_mock):
    admin = make_admin("Coder")
    codes = json.dumps(
        {"diagnoses": [{"code": "A41.9", "description": "Sepsis", "isPrimary": True}], "procedures": []}
    )
    compare = requests_mock.post(
        f"{API}/episodes/compare-upload",
        json={
            "dx": {
                "old": [{"code": "A41.9", "description": "Sepsis", "isPrimary": True}],
                "new": [{"Code": "A41.9", "Description": "Sepsis", "IsPrimary": True}],
            },
            "px": {"old": [], "new": []},
            "deltas": {"dxAdded": [], "dxRemoved": [], "pxAdded": [], "pxRemoved": []},
            "narrativePreview": "Patient admitted with sepsis.",
        },
    )

    diff = admin.diffs.compare_upload("note.txt", b"Patient admitted with sepsis.", codes)

    assert len(diff.dx.old) == 1
    assert diff.dx.old[0].code == "A41.9"
    assert diff.dx.old[0].is_primary is True
    assert diff.narrative_preview == "Patient admitted with sepsis."
    assert diff.audit_id is None
    assert admin.diffs.upload_diff is diff
    assert admin.diffs.diff is None
    assert "A41.9" in compare.last_request.body.decode("utf-8")


def test_upload_requires_a_file(make_admin, requests_mock):
    admin = make_admin("Coder")

    with pytest.raises(ValueError, match="choose a file"):
        admin.diffs.compare_upload("note.txt", None)
    assert requests_mock.call_count == 0
