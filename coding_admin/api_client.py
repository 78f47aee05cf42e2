"""HTTP gateway to the coding API.

Every request goes through :meth:`ApiClient._send`, which attaches the bearer
token for the active account (unless authentication is bypassed), applies the
configured timeout and counts failures.  Non-2xx responses become
:class:`~coding_admin.errors.HttpError`; a 204 or an empty body yields
``None``.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Mapping, Optional

import requests
import structlog
from prometheus_client import Counter

from coding_admin.config import ClientSettings
from coding_admin.errors import HttpError, NotSignedIn
from coding_admin.session import SessionContext
from coding_admin.token_broker import TokenBroker

logger = structlog.get_logger(__name__)

API_FAILURES = Counter(
    "coding_admin_api_failures_total",
    "Outbound coding API calls that failed",
    ("reason",),
)

EXPORT_FORMATS = ("csv", "json")


class ApiClient:
    """Authorized JSON / multipart calls against ``settings.api_base``."""

    def __init__(
        self,
        settings: ClientSettings,
        session: SessionContext,
        broker: Optional[TokenBroker] = None,
        *,
        http: Optional[requests.Session] = None,
    ) -> None:
        if broker is None and not settings.bypass_auth:
            raise ValueError("a token broker is required unless authentication is bypassed")
        self.settings = settings
        self.session = session
        self.broker = broker
        self.http = http or requests.Session()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def call(
        self,
        path: str,
        body: Any = None,
        method: Optional[str] = None,
        params: Optional[Mapping[str, Any]] = None,
    ) -> Any:
        """Send a JSON request and return the decoded response body.

        ``method`` defaults to POST when ``body`` is given and GET otherwise.
        """

        headers = {"Content-Type": "application/json"}
        headers.update(self._auth_headers())
        verb = method or ("POST" if body is not None else "GET")
        data = json.dumps(body) if body is not None else None
        response = self._send(verb, path, headers=headers, data=data, params=params)
        return self._parse(response)

    def upload(
        self,
        path: str,
        file_name: str,
        content: bytes,
        codes: Optional[str] = None,
        *,
        content_type: str = "application/octet-stream",
    ) -> Any:
        """POST a multipart form with ``file`` and an optional ``codes`` field."""

        headers = self._auth_headers()
        files = {"file": (file_name, content, content_type)}
        data: Dict[str, str] = {}
        if codes and codes.strip():
            data["codes"] = codes
        response = self._send("POST", path, headers=headers, files=files, data=data or None)
        return self._parse(response)

    def export_url(self, fmt: str) -> str:
        """Download link for the episode export; fetched by the browser, not here."""

        fmt = fmt.lower()
        if fmt not in EXPORT_FORMATS:
            raise ValueError(f"Unsupported export format {fmt!r}")
        return self.settings.url_for(f"export/episodes.{fmt}")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _auth_headers(self) -> Dict[str, str]:
        if self.settings.bypass_auth:
            return {}
        account = self.session.active_account
        if account is None or self.broker is None:
            raise NotSignedIn()
        token = self.broker.acquire(account, self.settings.api_scopes)
        return {"Authorization": f"Bearer {token.access_token}"}

    def _send(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        url = self.settings.url_for(path)
        kwargs.setdefault("timeout", self.settings.timeout)
        logger.debug("api_request", method=method, path=path)
        try:
            return self.http.request(method=method, url=url, **kwargs)
        except requests.exceptions.SSLError:
            API_FAILURES.labels(reason="tls_failure").inc()
            raise
        except requests.exceptions.RequestException:
            API_FAILURES.labels(reason="network_failure").inc()
            raise

    @staticmethod
    def _parse(response: requests.Response) -> Any:
        if response.status_code == 204:
            return None
        text = response.text
        if not 200 <= response.status_code < 300:
            API_FAILURES.labels(reason="http_error").inc()
            logger.warning(
                "api_call_failed",
                status=response.status_code,
                url=response.url,
            )
            raise HttpError(response.status_code, response.reason or "", text)
        return json.loads(text) if text else None


__all__ = ["API_FAILURES", "ApiClient", "EXPORT_FORMATS"]
