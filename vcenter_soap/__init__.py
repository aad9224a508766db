"""
vCenter SOAP Inventory Client

Read-only client for the vCenter vim25 SOAP API built from hand-written
envelopes on top of requests:

- Session handshake (RetrieveServiceContent / Login) and connectivity check
- PropertyCollector access with result normalization and pagination
- Breadth-first datacenter / folder traversal to find VMs by name
"""

__version__ = "1.0.0"

from .client import VCenterSoapClient
from .config import VCenterSoapSettings
from .endpoints import normalize_endpoint
from .errors import (
    AuthenticationError,
    ConfigurationError,
    MalformedResponseError,
    ProtocolError,
    RemoteFault,
    SoapTimeoutError,
    TransportError,
    VCenterSoapError,
    describe_fault,
)
from .models import ConnectionSummary, MatchMode, SearchResult, TraversalStats

__all__ = [
    "VCenterSoapClient",
    "VCenterSoapSettings",
    "normalize_endpoint",
    "VCenterSoapError",
    "ConfigurationError",
    "TransportError",
    "SoapTimeoutError",
    "MalformedResponseError",
    "RemoteFault",
    "AuthenticationError",
    "ProtocolError",
    "describe_fault",
    "ConnectionSummary",
    "MatchMode",
    "SearchResult",
    "TraversalStats",
]
