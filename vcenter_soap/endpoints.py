"""Endpoint normalization and the canonical vim25 operations used by the client.

Every SOAP operation the client is permitted to send is listed here. The
message shapes are fixed and hand-built in `vcenter_soap.envelope`; keeping
the set centralized makes it easy to verify nothing drifts into mutation
calls.
"""

from urllib.parse import urlsplit, urlunsplit

from vcenter_soap.config import SERVICE_PATH, SERVICE_PATH_VARIANTS
from vcenter_soap.errors import ConfigurationError

CANONICAL_SOAP_OPERATIONS = {
    "RetrieveServiceContent",
    "Login",
    "RetrievePropertiesEx",
    "ContinueRetrievePropertiesEx",
}


def normalize_endpoint(server_url: str) -> str:
    """
    Derive the SOAP endpoint from a raw server URL.

    https://vc.example.com/ui -> https://vc.example.com/ui/sdk
    https://vc.example.com/sdk/vimService -> https://vc.example.com/sdk

    Raises:
        ConfigurationError: non-https scheme, missing host, or unparseable URL
    """
    if not server_url or not server_url.strip():
        raise ConfigurationError("Server URL is required")

    try:
        parts = urlsplit(server_url.strip())
        port = parts.port  # raises ValueError on a bad port
    except ValueError as e:
        raise ConfigurationError(f"Invalid server URL '{server_url}': {e}")

    if parts.scheme.lower() != "https":
        raise ConfigurationError(f"Server URL must use https (got '{parts.scheme or 'none'}')")

    if not parts.hostname:
        raise ConfigurationError(f"Server URL has no host: '{server_url}'")

    path = parts.path.rstrip("/")
    for variant in SERVICE_PATH_VARIANTS:
        if path.lower().endswith(variant.lower()):
            path = path[: -len(variant)].rstrip("/")
            break

    netloc = parts.hostname if port is None else f"{parts.hostname}:{port}"
    if ":" in parts.hostname:
        # IPv6 literal
        netloc = f"[{parts.hostname}]" if port is None else f"[{parts.hostname}]:{port}"

    return urlunsplit(("https", netloc, path + SERVICE_PATH, "", ""))
