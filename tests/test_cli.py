import json

import jwt
import pytest

from conftest import API, episode
from coding_admin import cli


def _bypass(monkeypatch, roles=""):
    monkeypatch.setenv("API_BASE", API)
    monkeypatch.setenv("BYPASS_AUTH", "true")
    monkeypatch.setenv("BYPASS_ROLES", roles)


def test_export_url(monkeypatch, capsys):
    _bypass(monkeypatch)

    assert cli.main(["export-url", "csv"]) == 0
    assert json.loads(capsys.readouterr().out) == {"url": f"{API}/export/episodes.csv"}


def test_list_in_bypass_mode(monkeypatch, capsys, requests_mock):
    _bypass(monkeypatch)
    requests_mock.get(f"{API}/episodes", json={"items": [episode(1, 1)], "total": 1})

    assert cli.main(["list", "--status", "1", "--from", "2024-01-01", "--page-size", "10"]) == 0

    output = json.loads(capsys.readouterr().out)
    assert output["total"] == 1
    assert output["items"][0]["patientName"] == "Patient 1"
    assert "Authorization" not in requests_mock.last_request.headers


def test_submit_with_static_token(monkeypatch, capsys, requests_mock):
    token = jwt.encode(
        {"preferred_username": "batch@nhs.test", "roles": ["Coder"]},
        "signing-key-that-this-client-never-verifies",
        algorithm="HS256",
    )
    monkeypatch.setenv("API_BASE", API)
    monkeypatch.setenv("API_SCOPE", "api://coding")
    monkeypatch.setenv("API_BEARER_TOKEN", token)
    requests_mock.get(f"{API}/episodes", [{"json": [episode(3, 0)]}, {"json": [episode(3, 1)]}])
    submit = requests_mock.post(f"{API}/episodes/3/submit", status_code=204)

    assert cli.main(["submit", "3"]) == 0

    assert submit.last_request.headers["Authorization"] == f"Bearer {token}"
    output = json.loads(capsys.readouterr().out)
    assert output["items"][0]["status"] == 1


def test_errors_exit_non_zero(monkeypatch, capsys, requests_mock):
    _bypass(monkeypatch)
    requests_mock.get(f"{API}/episodes", status_code=500, reason="Internal Server Error", text="boom")

    assert cli.main(["list"]) == 1
    assert "500 Internal Server Error: boom" in capsys.readouterr().err


def test_missing_identity_is_reported(monkeypatch, capsys):
    monkeypatch.setenv("API_BASE", API)

    assert cli.main(["list"]) == 1
    assert "identity provider is required" in capsys.readouterr().err


def test_query_refused_without_coder_role(monkeypatch, capsys, requests_mock):
    _bypass(monkeypatch, roles="Reviewer")
    sent = requests_mock.post(f"{API}/episodes/3/queries", status_code=204)

    assert cli.main(["query", "3"]) == 1
    assert not sent.called
    assert "not permitted" in capsys.readouterr().err


def test_query_recipient_is_separate_from_date_filters(monkeypatch, capsys, requests_mock):
    _bypass(monkeypatch, roles="Coder")
    sent = requests_mock.post(f"{API}/episodes/3/queries", status_code=204)

    assert cli.main(["query", "3", "--to", "dr.jones@hospital.nhs.uk", "--subject", "Site?"]) == 0

    assert sent.last_request.json()["to"] == "dr.jones@hospital.nhs.uk"
    assert sent.last_request.json()["subject"] == "Site?"
    assert "Power Automate" in json.loads(capsys.readouterr().out)["message"]


def test_transition_help_names_the_page_lookup(capsys):
    with pytest.raises(SystemExit):
        cli.main(["approve", "--help"])

    assert "page selected by the filter options" in " ".join(capsys.readouterr().out.split())
