"""
Trust Anchor SSL Adapter for vCenter Connections
=================================================

vCenter appliances commonly present certificates issued by the VMCA (the
appliance's own certificate authority) or another private CA. This adapter
keeps certificate verification on while adding a caller-supplied PEM anchor
to the platform trust store.

Usage:
    from vcenter_soap.tls_adapter import create_soap_session

    session = create_soap_session(ca_certificate=pem_text)
    response = session.post('https://vcenter/sdk', data=envelope)
"""

import ssl
from http.cookiejar import DefaultCookiePolicy
from typing import Optional

import requests
import urllib3
from requests.adapters import HTTPAdapter
from urllib3.util.ssl_ import create_urllib3_context

from vcenter_soap.errors import ConfigurationError


class TrustAnchorAdapter(HTTPAdapter):
    """
    HTTPAdapter that verifies server certificates against the platform
    store plus one extra PEM-encoded authority.
    """

    def __init__(self, ca_certificate: str, *args, **kwargs):
        self.ssl_context = self._create_context(ca_certificate)
        super().__init__(*args, **kwargs)

    def _create_context(self, ca_certificate: str) -> ssl.SSLContext:
        """Create a verifying SSL context that also trusts the supplied CA"""
        ctx = create_urllib3_context(cert_reqs=ssl.CERT_REQUIRED)
        ctx.check_hostname = True
        ctx.load_default_certs()

        try:
            ctx.load_verify_locations(cadata=ca_certificate)
        except (ssl.SSLError, ValueError) as e:
            raise ConfigurationError(f"Invalid CA certificate: {e}")

        return ctx

    def init_poolmanager(self, *args, **kwargs):
        """Initialize pool manager with the trust-anchor SSL context"""
        kwargs['ssl_context'] = self.ssl_context
        return super().init_poolmanager(*args, **kwargs)

    def proxy_manager_for(self, proxy, **proxy_kwargs):
        """Initialize proxy manager with the trust-anchor SSL context"""
        proxy_kwargs['ssl_context'] = self.ssl_context
        return super().proxy_manager_for(proxy, **proxy_kwargs)


def create_soap_session(allow_insecure: bool = False, ca_certificate: Optional[str] = None) -> requests.Session:
    """
    Create a requests.Session with the requested TLS trust policy.

    - allow_insecure: certificate verification is skipped (lab use)
    - ca_certificate: PEM anchor added while verification stays enabled
    - neither: platform default verification

    Cookies are never stored in the session jar; the transport manages the
    vmware_soap_session cookie explicitly.
    """
    session = requests.Session()
    session.cookies.set_policy(DefaultCookiePolicy(allowed_domains=[]))

    if allow_insecure:
        session.verify = False
        urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)
        return session

    session.verify = True
    if ca_certificate and ca_certificate.strip():
        session.mount('https://', TrustAnchorAdapter(ca_certificate))

    return session
