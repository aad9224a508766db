"""
vCenter SOAP Transport

All SOAP calls go through SoapTransport.post() to ensure:
- Fixed protocol headers (SOAPAction, exact Content-Length, session cookie)
- Redirects are never followed
- Consistent status / timeout / connection error mapping
- Session cookie capture from every response
"""

import logging
import re
from typing import Optional

import requests

from vcenter_soap.config import DEFAULT_TIMEOUT_MS, SESSION_COOKIE_NAME, SOAP_ACTION
from vcenter_soap.endpoints import CANONICAL_SOAP_OPERATIONS
from vcenter_soap.envelope import extract_fault_text, parse_envelope, snippet
from vcenter_soap.errors import MalformedResponseError, RemoteFault, SoapTimeoutError, TransportError

_SESSION_COOKIE_RE = re.compile(rf'(?:^|[;,]\s*){re.escape(SESSION_COOKIE_NAME)}=([^;,]+)', re.IGNORECASE)


class SoapTransport:
    """
    HTTPS POST transport for vim25 SOAP envelopes.

    Owns the session token for the lifetime of the client instance. The token
    is written only here, right after a response arrives (last writer wins).
    """

    def __init__(
        self,
        endpoint: str,
        http: requests.Session,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        logger: Optional[logging.Logger] = None,
        debug: bool = False,
    ):
        """
        Args:
            endpoint: Normalized SOAP endpoint (see normalize_endpoint)
            http: requests.Session carrying the TLS trust policy
            timeout_ms: Per-request deadline in milliseconds
            logger: Logger for the one-time debug line (defaults to module logger)
            debug: Enable transport debug logging for this instance
        """
        self.endpoint = endpoint
        self.http = http
        self.timeout_ms = timeout_ms
        self.logger = logger or logging.getLogger(__name__)
        self.debug = debug
        self.session_token: Optional[str] = None
        self._debug_logged = False

    @property
    def has_session(self) -> bool:
        return bool(self.session_token)

    def clear_session(self):
        self.session_token = None

    def close(self):
        self.http.close()

    def post(self, body: str, operation: str) -> str:
        """
        POST a SOAP envelope and return the raw response XML.

        Args:
            body: Complete SOAP envelope
            operation: vim25 operation name, used for error context

        Returns:
            str: Response body (HTTP 200 only)

        Raises:
            SoapTimeoutError: Deadline exceeded
            TransportError: Connection failure, redirect, or non-200 status
            RemoteFault: HTTP 500 carrying a well-formed SOAP fault
        """
        if operation not in CANONICAL_SOAP_OPERATIONS:
            raise ValueError(f"Unsupported SOAP operation: {operation}")

        body_bytes = body.encode('utf-8')
        headers = {
            'Content-Type': 'text/xml; charset=utf-8',
            'Accept': 'text/xml',
            'SOAPAction': SOAP_ACTION,
            'Content-Length': str(len(body_bytes)),
        }
        if self.session_token:
            headers['Cookie'] = f"{SESSION_COOKIE_NAME}={self.session_token}"

        self._log_first_request(operation, headers, body)

        try:
            response = self.http.post(
                self.endpoint,
                data=body_bytes,
                headers=headers,
                timeout=self.timeout_ms / 1000.0,
                allow_redirects=False,
            )
        except requests.exceptions.Timeout:
            raise SoapTimeoutError(
                f"Request timed out after {self.timeout_ms} ms",
                operation=operation,
            )
        except requests.exceptions.RequestException as e:
            raise TransportError(f"Connection to {self.endpoint} failed: {e}", operation=operation)

        self._capture_session_cookie(response)

        status_code = response.status_code
        raw = response.content.decode('utf-8', errors='replace') if response.content else ''

        if status_code == 200:
            return raw

        if 300 <= status_code < 400:
            location = response.headers.get('Location', '')
            raise TransportError(
                f"Unexpected redirect (HTTP {status_code}) to '{location}'; "
                f"check the server URL and any reverse proxy routing",
                status_code=status_code,
                operation=operation,
                snippet=snippet(raw),
            )

        if status_code == 404:
            raise TransportError(
                f"SOAP endpoint not found (HTTP 404) at {self.endpoint}; check the server URL",
                status_code=status_code,
                operation=operation,
                snippet=snippet(raw),
            )

        if status_code == 500:
            try:
                parse_envelope(raw, operation=operation)
            except RemoteFault as fault:
                fault.status_code = status_code
                raise
            except MalformedResponseError:
                pass

            detail = extract_fault_text(raw) or snippet(raw)
            raise TransportError(
                f"HTTP 500: {detail}",
                status_code=status_code,
                operation=operation,
                snippet=detail,
            )

        body_snippet = snippet(raw)
        raise TransportError(
            f"HTTP {status_code}: {body_snippet or response.reason}",
            status_code=status_code,
            operation=operation,
            snippet=body_snippet,
        )

    def _capture_session_cookie(self, response: requests.Response):
        """Scan Set-Cookie for the session cookie; overwrite the active token when present."""
        header = response.headers.get('Set-Cookie') if response.headers else None
        if not header:
            return

        match = _SESSION_COOKIE_RE.search(header)
        if match:
            self.session_token = match.group(1).strip()

    def _log_first_request(self, operation: str, headers: dict, body: str):
        """Emit a single transport-debug line per instance when debug is enabled."""
        if not self.debug or self._debug_logged:
            return
        self._debug_logged = True

        safe_headers = dict(headers)
        if 'Cookie' in safe_headers:
            safe_headers['Cookie'] = f"{SESSION_COOKIE_NAME}=<redacted>"

        # Login bodies carry the password
        preview = '<redacted>' if operation == 'Login' else body[:100]

        self.logger.info(
            f"SOAP request: url={self.endpoint} operation={operation} "
            f"headers={safe_headers} body_preview={preview!r}"
        )
