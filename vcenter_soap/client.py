"""
vCenter SOAP Client

Facade wiring transport, session, property collector, traversal and search
together for one vCenter. One instance owns one session; callers needing
concurrency should use independent instances.

Usage:
    from vcenter_soap import VCenterSoapClient

    with VCenterSoapClient("https://vc.example.com", "reader@vsphere.local", password) as client:
        summary = client.test_connection()
        result = client.find_vms_by_name("web", match_mode="contains", max_results=20)
        for item in result.to_items():
            print(item)
"""

import logging
from typing import Optional, Union

import requests
from pydantic import ValidationError

from vcenter_soap.config import DEFAULT_MAX_RESULTS, DEFAULT_TIMEOUT_MS, VCenterSoapSettings
from vcenter_soap.endpoints import normalize_endpoint
from vcenter_soap.errors import ConfigurationError, ProtocolError
from vcenter_soap.inventory import InventoryTraversal
from vcenter_soap.models import ConnectionSummary, MatchMode, SearchOptions, SearchResult
from vcenter_soap.properties import PropertyCollector
from vcenter_soap.search import VMSearch
from vcenter_soap.session import SessionManager
from vcenter_soap.tls_adapter import create_soap_session
from vcenter_soap.transport import SoapTransport


class VCenterSoapClient:
    """Read-only vCenter client: connectivity check and VM search by name."""

    def __init__(
        self,
        server_url: str,
        username: str,
        password: str,
        allow_insecure: bool = False,
        ca_certificate: Optional[str] = None,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        debug: bool = False,
        logger: Optional[logging.Logger] = None,
        http: Optional[requests.Session] = None,
    ):
        """
        Args:
            server_url: vCenter base address (https only)
            username: vCenter username
            password: vCenter password
            allow_insecure: Skip certificate verification (lab use)
            ca_certificate: PEM anchor trusted in addition to the platform store
            timeout_ms: Per-request timeout in milliseconds
            debug: Enable diagnostics for this instance
            logger: Logger instance for diagnostics
            http: Pre-built requests.Session (overrides the TLS options)

        Raises:
            ConfigurationError: invalid server URL or timeout. No network call is made.
        """
        self.endpoint = normalize_endpoint(server_url)
        if timeout_ms is None or timeout_ms <= 0:
            raise ConfigurationError(f"Timeout must be a positive number of milliseconds (got {timeout_ms})")

        self.debug = debug
        self.logger = logger or logging.getLogger(__name__)

        if http is None:
            http = create_soap_session(allow_insecure=allow_insecure, ca_certificate=ca_certificate)

        self.transport = SoapTransport(
            self.endpoint,
            http,
            timeout_ms=timeout_ms,
            logger=self.logger,
            debug=debug,
        )
        self.session = SessionManager(self.transport, username, password)

    @classmethod
    def from_settings(cls, settings: Optional[VCenterSoapSettings] = None, **kwargs) -> "VCenterSoapClient":
        """Build a client from VCenterSoapSettings (environment when omitted)."""
        if settings is None:
            try:
                settings = VCenterSoapSettings()
            except ValidationError as e:
                raise ConfigurationError(f"Invalid vCenter SOAP settings: {e}")

        return cls(
            server_url=settings.server_url,
            username=settings.username,
            password=settings.password,
            allow_insecure=settings.allow_insecure,
            ca_certificate=settings.ca_certificate,
            timeout_ms=settings.timeout_ms,
            debug=settings.debug,
            **kwargs,
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def close(self):
        self.transport.close()

    def test_connection(self) -> ConnectionSummary:
        """RetrieveServiceContent, Login, RetrieveServiceContent; returns the server identity."""
        return self.session.test_connection()

    def find_vms_by_name(
        self,
        name_query: str,
        match_mode: Union[MatchMode, str] = MatchMode.CONTAINS,
        max_results: int = DEFAULT_MAX_RESULTS,
        include_power_state: bool = True,
        include_uuid: bool = True,
        debug: bool = False,
    ) -> SearchResult:
        """
        Search every datacenter and VM folder for VMs whose name matches.

        Args:
            name_query: Name or fragment to look for
            match_mode: 'exact' (case-sensitive) or 'contains' (case-insensitive)
            max_results: Upper bound on returned records
            include_power_state: Add power_state to each record
            include_uuid: Add uuid and vm_path_name to each record
            debug: Attach traversal diagnostics to the result

        Returns:
            SearchResult with records in discovery order
        """
        try:
            options = SearchOptions(
                name_query=name_query,
                match_mode=match_mode,
                max_results=max_results,
                include_power_state=include_power_state,
                include_uuid=include_uuid,
                debug=debug or self.debug,
            )
        except ValidationError as e:
            raise ConfigurationError(f"Invalid search options: {e}")

        content = self.session.ensure_authenticated()
        if not content.root_folder or not content.property_collector:
            raise ProtocolError("Service content missing rootFolder or propertyCollector", operation='RetrieveServiceContent')

        collector = PropertyCollector(self.transport, content.property_collector)
        traversal = InventoryTraversal(collector, content.root_folder, debug=options.debug, logger=self.logger)
        return VMSearch(collector, traversal, logger=self.logger).run(options)
