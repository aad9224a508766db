"""
vCenter SOAP Session Manager

Drives the vim25 handshake:

    UNAUTHENTICATED -> SERVICE_DISCOVERED -> AUTHENTICATED

RetrieveServiceContent is always callable; Login needs the sessionManager
ref from it. The session token itself is captured by the transport.
"""

import logging
from typing import Any, Dict, Optional

from vcenter_soap.envelope import (
    build_envelope,
    login_payload,
    parse_envelope,
    retrieve_service_content_payload,
    unwrap_scalar,
)
from vcenter_soap.errors import AuthenticationError, ProtocolError, RemoteFault, VCenterSoapError, describe_fault
from vcenter_soap.models import AboutInfo, ConnectionSummary, ServiceContent, SessionState

logger = logging.getLogger(__name__)


def _text(value: Any) -> str:
    value = unwrap_scalar(value)
    return value if isinstance(value, str) else ''


def _parse_service_content(body: Dict[str, Any]) -> ServiceContent:
    response = None
    for key, value in body.items():
        if key.lower() == 'retrieveservicecontentresponse':
            response = value
            break

    returnval = response.get('returnval') if isinstance(response, dict) else None
    if not isinstance(returnval, dict):
        raise ProtocolError("Unexpected RetrieveServiceContent response", operation='RetrieveServiceContent')

    session_manager = _text(returnval.get('sessionManager'))
    if not session_manager:
        raise ProtocolError("SessionManager reference not found", operation='RetrieveServiceContent')

    about = returnval.get('about') if isinstance(returnval.get('about'), dict) else {}

    return ServiceContent(
        about=AboutInfo(
            api_type=_text(about.get('apiType')),
            full_name=_text(about.get('fullName')),
            name=_text(about.get('name')),
            vendor=_text(about.get('vendor')),
            version=_text(about.get('version')),
            build=_text(about.get('build')),
            instance_uuid=_text(about.get('instanceUuid')) or None,
        ),
        session_manager=session_manager,
        root_folder=_text(returnval.get('rootFolder')) or None,
        property_collector=_text(returnval.get('propertyCollector')) or None,
    )


class SessionManager:
    """Handshake and session lifecycle for one client instance."""

    def __init__(self, transport, username: str, password: str):
        self.transport = transport
        self.username = username
        self.password = password
        self.state = SessionState.UNAUTHENTICATED
        self.service_content: Optional[ServiceContent] = None

    def retrieve_service_content(self) -> ServiceContent:
        """
        Fetch the ServiceContent descriptor.

        Raises:
            ProtocolError: returnval or sessionManager ref missing
        """
        operation = 'RetrieveServiceContent'
        raw = self.transport.post(build_envelope(retrieve_service_content_payload()), operation)
        content = _parse_service_content(parse_envelope(raw, operation=operation))

        self.service_content = content
        if self.state == SessionState.UNAUTHENTICATED:
            self.state = SessionState.SERVICE_DISCOVERED
        return content

    def login(self):
        """
        Authenticate against the sessionManager ref.

        Fetches the ServiceContent first if it has not been fetched yet. On any
        failure the session token is cleared.

        Raises:
            AuthenticationError: HTTP 200 but no session cookie captured
            RemoteFault: server rejected the credentials
        """
        if self.service_content is None:
            self.retrieve_service_content()

        operation = 'Login'
        body = build_envelope(login_payload(self.service_content.session_manager, self.username, self.password))

        try:
            raw = self.transport.post(body, operation)
            parse_envelope(raw, operation=operation)
            if not self.transport.has_session:
                raise AuthenticationError(
                    "Authentication failed: session cookie not received",
                    operation=operation,
                )
        except VCenterSoapError as e:
            self.transport.clear_session()
            self.state = SessionState.SERVICE_DISCOVERED
            if isinstance(e, RemoteFault):
                info = describe_fault(e)
                logger.warning(f"Login to {self.transport.endpoint} as {self.username} failed: "
                               f"{info['title']} - {info['message']}")
            raise

        self.state = SessionState.AUTHENTICATED
        logger.debug(f"Logged in to {self.transport.endpoint} as {self.username}")

    def ensure_authenticated(self) -> ServiceContent:
        """
        Return a ServiceContent fetched in an authenticated context.

        Logs in only when no session token exists yet; an existing session is
        reused.
        """
        content = self.retrieve_service_content()
        if self.transport.has_session and self.state == SessionState.AUTHENTICATED:
            return content

        self.login()
        return self.retrieve_service_content()

    def test_connection(self) -> ConnectionSummary:
        """
        Validate connectivity and credentials.

        Fetches the ServiceContent, logs in, then fetches it again so the
        summary reflects the authenticated server identity.
        """
        self.retrieve_service_content()
        self.login()
        content = self.retrieve_service_content()
        about = content.about

        return ConnectionSummary(
            connected=True,
            api_type=about.api_type,
            full_name=about.full_name,
            version=about.version,
            build=about.build,
        )
