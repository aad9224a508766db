"""
vCenter SOAP Error Taxonomy

Exception classes raised by the SOAP client plus a mapping of vim25 fault
types to user-friendly messages for better operator experience.
"""

from typing import Any, Dict, Optional


class VCenterSoapError(Exception):
    """Base exception for vCenter SOAP operations"""

    def __init__(self, message: str, status_code: Optional[int] = None, operation: Optional[str] = None):
        self.message = message
        self.status_code = status_code
        self.operation = operation
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.operation:
            return f"{self.operation}: {self.message}"
        return self.message


class ConfigurationError(VCenterSoapError):
    """Invalid server address or settings. Raised before any network call."""


class TransportError(VCenterSoapError):
    """Non-2xx status, redirect, or connection-level failure"""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        operation: Optional[str] = None,
        snippet: str = "",
    ):
        super().__init__(message, status_code=status_code, operation=operation)
        self.snippet = snippet


class SoapTimeoutError(VCenterSoapError, TimeoutError):
    """Request exceeded the configured deadline"""


class MalformedResponseError(VCenterSoapError):
    """Response body is not XML or lacks the Envelope/Body shape"""

    def __init__(self, message: str, snippet: str = "", operation: Optional[str] = None):
        super().__init__(message, operation=operation)
        self.snippet = snippet


class RemoteFault(VCenterSoapError):
    """Well-formed SOAP fault returned by the server"""

    def __init__(
        self,
        fault_string: str,
        fault_code: Optional[str] = None,
        fault_type: Optional[str] = None,
        status_code: Optional[int] = None,
        operation: Optional[str] = None,
    ):
        super().__init__(fault_string, status_code=status_code, operation=operation)
        self.fault_string = fault_string
        self.fault_code = fault_code
        self.fault_type = fault_type


class AuthenticationError(VCenterSoapError):
    """Login succeeded at HTTP level but no session cookie was captured"""


class ProtocolError(VCenterSoapError):
    """Expected result shape missing from an otherwise valid response"""


# Mapping of vim25 fault types (detail element names) to friendly messages
VIM_FAULT_MESSAGES: Dict[str, Dict[str, Any]] = {
    'InvalidLogin': {
        'title': 'Authentication Failed',
        'message': 'Invalid credentials for vCenter connection.',
        'is_recoverable': False,
    },
    'NotAuthenticated': {
        'title': 'Session Not Authenticated',
        'message': 'The session is not logged in or has expired.',
        'is_recoverable': True,
    },
    'NoPermission': {
        'title': 'Permission Denied',
        'message': 'Insufficient permissions to read this inventory object.',
        'is_recoverable': False,
    },
    'ManagedObjectNotFound': {
        'title': 'Object Not Found',
        'message': 'The referenced inventory object no longer exists.',
        'is_recoverable': True,
    },
    'InvalidProperty': {
        'title': 'Invalid Property',
        'message': 'A requested property path is not valid for the object type.',
        'is_recoverable': False,
    },
    'InvalidRequest': {
        'title': 'Invalid Request',
        'message': 'The server rejected the request envelope.',
        'is_recoverable': False,
    },
    'InvalidType': {
        'title': 'Invalid Type',
        'message': 'The object type in the request is not known to the server.',
        'is_recoverable': False,
    },
    'RequestCanceled': {
        'title': 'Request Cancelled',
        'message': 'The request was cancelled by the server.',
        'is_recoverable': True,
    },
}


def describe_fault(error: RemoteFault) -> Dict[str, Any]:
    """
    Describe a RemoteFault for operator display.

    Returns:
        dict with title, message, is_recoverable, original_message, fault_type
    """
    fault_type = error.fault_type or ''
    for known, info in VIM_FAULT_MESSAGES.items():
        if fault_type == known or fault_type == f"{known}Fault":
            return {
                'title': info['title'],
                'message': info['message'],
                'is_recoverable': info['is_recoverable'],
                'original_message': error.fault_string,
                'fault_type': known,
            }

    return {
        'title': 'vCenter Fault',
        'message': error.fault_string,
        'is_recoverable': False,
        'original_message': error.fault_string,
        'fault_type': fault_type or None,
    }
