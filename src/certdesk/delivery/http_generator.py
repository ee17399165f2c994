r"""Remote document renderer reached over HTTP(S).

API contract
------------
``POST {generation.http.url}``

Request body (JSON)::

    {"requestId": "6f1c...", "issuerId": "adm1"}

Response body (JSON, HTTP 200)::

    {"success": true, "certificateUrl": "https://.../cert.pdf"}

or, for a rendering failure the service handled itself::

    {"success": false, "error": "template missing for course X"}

Any other status, an unreachable host or an unreadable body becomes a
failed :class:`GenerationResult`; nothing is raised to the caller.
"""

from __future__ import annotations

import contextlib
import json
import logging
import ssl
import urllib.error
import urllib.request
from typing import TYPE_CHECKING

from certdesk.core.errors import GenerationError
from certdesk.delivery.base import DocumentGenerator, GenerationResult

if TYPE_CHECKING:
    from uuid import UUID

    from certdesk.config.settings import GenerationSettings

log = logging.getLogger(__name__)


class HttpDocumentGenerator(DocumentGenerator):
    """Asks an HTTP rendering service for the certificate artifact."""

    def __init__(self, settings: GenerationSettings) -> None:
        self._http = settings.http
        self._ssl_ctx: ssl.SSLContext | None = None

    def startup_check(self) -> None:
        if not self._http.url:
            msg = "generation.http.url is required for the http generator"
            raise GenerationError(msg)

    def _get_ssl_context(self) -> ssl.SSLContext:
        if self._ssl_ctx is None:
            ctx = ssl.create_default_context()
            if self._http.ca_cert_path:
                ctx.load_verify_locations(self._http.ca_cert_path)
            self._ssl_ctx = ctx
        return self._ssl_ctx

    def _post(self, payload: dict) -> dict:
        req = urllib.request.Request(
            self._http.url,
            data=json.dumps(payload).encode("utf-8"),
            method="POST",
            headers={
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
        )
        if self._http.auth_value:
            req.add_header(self._http.auth_header, self._http.auth_value)

        opener = urllib.request.build_opener(
            urllib.request.HTTPSHandler(context=self._get_ssl_context()),
        )
        try:
            resp = opener.open(req, timeout=self._http.timeout_seconds)
        except urllib.error.HTTPError as exc:
            body = ""
            with contextlib.suppress(OSError, UnicodeDecodeError):
                body = exc.read().decode("utf-8", errors="replace")[:500]
            msg = f"Generator returned HTTP {exc.code}: {body}"
            raise GenerationError(msg, retryable=exc.code >= 500) from exc
        except (urllib.error.URLError, OSError) as exc:
            msg = f"Failed to reach generator at {self._http.url}: {exc}"
            raise GenerationError(msg, retryable=True) from exc

        with resp:
            try:
                return json.loads(resp.read().decode("utf-8"))
            except (json.JSONDecodeError, UnicodeDecodeError) as exc:
                msg = f"Generator returned invalid JSON: {exc}"
                raise GenerationError(msg) from exc

    def generate(self, request_id: UUID, issuer_id: str) -> GenerationResult:
        try:
            body = self._post({"requestId": str(request_id), "issuerId": issuer_id})
        except GenerationError as exc:
            log.warning("Generation call for %s failed: %s", request_id, exc.detail)
            return GenerationResult.failed(exc.detail)

        if body.get("success") and body.get("certificateUrl"):
            return GenerationResult.ok(body["certificateUrl"])
        error = body.get("error") or "generator reported failure without detail"
        return GenerationResult.failed(str(error))
