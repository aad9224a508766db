"""
Configuration for the vCenter SOAP client.

Protocol constants live at module level; connection settings are read from
environment variables (prefix VCENTER_SOAP_) or passed explicitly.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# vim25 SOAP endpoint path appended to the server base address
SERVICE_PATH = "/sdk"

# Trailing path variants users paste from browser bars / docs
SERVICE_PATH_VARIANTS = ("/sdk/vimService", "/sdk")

# vCenter tolerates a generic SOAPAction for every operation
SOAP_ACTION = "urn:vim25/7.0"

SOAP_ENV_NS = "http://schemas.xmlsoap.org/soap/envelope/"
VIM25_NS = "urn:vim25"

SESSION_COOKIE_NAME = "vmware_soap_session"

# Request timeout (milliseconds)
DEFAULT_TIMEOUT_MS = 15000

# Max object refs per RetrievePropertiesEx call
PROPERTY_BATCH_SIZE = 100

DEFAULT_MAX_RESULTS = 100

# Length cap for response snippets carried by errors and debug logs
SNIPPET_LENGTH = 200


class VCenterSoapSettings(BaseSettings):
    """Connection settings supplied by the credential store / host app."""

    server_url: str
    username: str
    password: str

    # Lab use only - disables certificate verification entirely
    allow_insecure: bool = False

    # PEM text for private or self-signed authorities
    ca_certificate: Optional[str] = None

    timeout_ms: int = Field(default=DEFAULT_TIMEOUT_MS, gt=0)

    debug: bool = False

    model_config = SettingsConfigDict(env_prefix="VCENTER_SOAP_")
