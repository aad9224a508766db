"""
SOAP Envelope Codec

Builds the fixed vim25 request envelopes and parses responses into plain
Python structures:

- element with children      -> dict keyed by local name (repeats -> list)
- element with a type attr   -> ObjectRef(text, type)
- leaf element               -> text

Namespace prefixes are ignored on the way in; Envelope/Body are matched
case-insensitively.
"""

import re
import xml.etree.ElementTree as ET
from typing import Any, Dict, List, Optional, Sequence, Union
from xml.sax.saxutils import escape, unescape

from vcenter_soap.config import SNIPPET_LENGTH, SOAP_ENV_NS, VIM25_NS
from vcenter_soap.errors import MalformedResponseError, RemoteFault
from vcenter_soap.models import ObjectRef

_XML_ENTITIES = {'"': '&quot;', "'": '&apos;'}
_XML_UNENTITIES = {'&quot;': '"', '&apos;': "'"}

_FAULTSTRING_RE = re.compile(r'<(?:[\w.-]+:)?faultstring\b[^>]*>(.*?)</(?:[\w.-]+:)?faultstring>', re.DOTALL | re.IGNORECASE)


def escape_xml(value: Any) -> str:
    """Escape a value for embedding as XML text or attribute content."""
    return escape(str(value), _XML_ENTITIES)


def snippet(raw: Union[str, bytes, None], length: int = SNIPPET_LENGTH) -> str:
    if raw is None:
        return ""
    if isinstance(raw, bytes):
        raw = raw.decode('utf-8', errors='replace')
    return raw.strip()[:length]


# =============================================================================
# Request side
# =============================================================================

def build_envelope(payload: str) -> str:
    """Wrap an operation payload in the soapenv Envelope/Body structure."""
    return "\n".join([
        '<?xml version="1.0" encoding="UTF-8"?>',
        f'<soapenv:Envelope xmlns:soapenv="{SOAP_ENV_NS}" xmlns:urn="{VIM25_NS}">',
        '  <soapenv:Body>',
        payload,
        '  </soapenv:Body>',
        '</soapenv:Envelope>',
    ])


def _this(ref_type: str, ref: str) -> str:
    return f'      <_this type="{escape_xml(ref_type)}">{escape_xml(ref)}</_this>'


def retrieve_service_content_payload() -> str:
    return "\n".join([
        f'    <RetrieveServiceContent xmlns="{VIM25_NS}">',
        _this("ServiceInstance", "ServiceInstance"),
        '    </RetrieveServiceContent>',
    ])


def login_payload(session_manager: str, username: str, password: str) -> str:
    return "\n".join([
        f'    <Login xmlns="{VIM25_NS}">',
        _this("SessionManager", session_manager),
        f'      <userName>{escape_xml(username)}</userName>',
        f'      <password>{escape_xml(password)}</password>',
        '    </Login>',
    ])


def retrieve_properties_payload(
    property_collector: str,
    object_type: str,
    paths: Sequence[str],
    refs: Sequence[str],
) -> str:
    """
    RetrievePropertiesEx with one propSet applied to every ref in the batch.

    The empty <options/> element is mandatory; vCenter rejects the call
    without it.
    """
    lines = [
        f'    <RetrievePropertiesEx xmlns="{VIM25_NS}">',
        _this("PropertyCollector", property_collector),
        '      <specSet>',
        '        <propSet>',
        f'          <type>{escape_xml(object_type)}</type>',
    ]
    lines.extend(f'          <pathSet>{escape_xml(path)}</pathSet>' for path in paths)
    lines.append('        </propSet>')
    for ref in refs:
        lines.extend([
            '        <objectSet>',
            f'          <obj type="{escape_xml(object_type)}">{escape_xml(ref)}</obj>',
            '        </objectSet>',
        ])
    lines.extend([
        '      </specSet>',
        '      <options/>',
        '    </RetrievePropertiesEx>',
    ])
    return "\n".join(lines)


def continue_retrieve_properties_payload(property_collector: str, token: str) -> str:
    return "\n".join([
        f'    <ContinueRetrievePropertiesEx xmlns="{VIM25_NS}">',
        _this("PropertyCollector", property_collector),
        f'      <token>{escape_xml(token)}</token>',
        '    </ContinueRetrievePropertiesEx>',
    ])


# =============================================================================
# Response side
# =============================================================================

def _local_name(tag: str) -> str:
    if tag.startswith('{'):
        tag = tag.split('}', 1)[1]
    if ':' in tag:
        tag = tag.split(':', 1)[1]
    return tag


def element_to_value(elem: ET.Element) -> Any:
    """Convert an element into dict / ObjectRef / text (see module docstring)."""
    children = list(elem)
    if children:
        result: Dict[str, Any] = {}
        for child in children:
            key = _local_name(child.tag)
            value = element_to_value(child)
            if key in result:
                existing = result[key]
                if isinstance(existing, list):
                    existing.append(value)
                else:
                    result[key] = [existing, value]
            else:
                result[key] = value
        return result

    text = elem.text or ''
    if not text.strip():
        text = ''

    ref_type = elem.get('type')
    if ref_type is not None:
        return ObjectRef(text.strip(), ref_type)

    return text


def _find_child(parent: ET.Element, name: str) -> Optional[ET.Element]:
    for child in parent:
        if _local_name(child.tag).lower() == name:
            return child
    return None


def parse_envelope(raw: Union[str, bytes], operation: Optional[str] = None) -> Dict[str, Any]:
    """
    Parse a SOAP response and return its Body as a dict.

    Raises:
        MalformedResponseError: not XML, or no Envelope/Body
        RemoteFault: the Body carries a SOAP Fault
    """
    data = raw.encode('utf-8') if isinstance(raw, str) else raw
    try:
        root = ET.fromstring(data)
    except ET.ParseError as e:
        raise MalformedResponseError(
            f"Failed to parse SOAP response: {e}",
            snippet=snippet(raw),
            operation=operation,
        )

    if _local_name(root.tag).lower() != 'envelope':
        raise MalformedResponseError(
            f"Invalid SOAP response: root element is '{_local_name(root.tag)}'",
            snippet=snippet(raw),
            operation=operation,
        )

    body_elem = _find_child(root, 'body')
    if body_elem is None:
        raise MalformedResponseError(
            "Invalid SOAP response: missing body",
            snippet=snippet(raw),
            operation=operation,
        )

    body = element_to_value(body_elem)
    if not isinstance(body, dict):
        body = {}

    for key, value in body.items():
        if key.lower() == 'fault':
            raise fault_from_value(value, operation=operation)

    return body


def fault_from_value(fault: Any, status_code: Optional[int] = None, operation: Optional[str] = None) -> RemoteFault:
    """Build a RemoteFault from a parsed <Fault> element (SOAP 1.1 or 1.2)."""
    if not isinstance(fault, dict):
        return RemoteFault(str(fault) or "Unknown fault", status_code=status_code, operation=operation)

    fault_string = unwrap_scalar(fault.get('faultstring'))
    if not fault_string and isinstance(fault.get('Reason'), dict):
        fault_string = unwrap_scalar(fault['Reason'].get('Text'))

    fault_code = unwrap_scalar(fault.get('faultcode'))
    if not fault_code and isinstance(fault.get('Code'), dict):
        fault_code = unwrap_scalar(fault['Code'].get('Value'))

    fault_type = None
    detail = fault.get('detail') or fault.get('Detail')
    if isinstance(detail, dict) and detail:
        fault_type = next(iter(detail))

    return RemoteFault(
        fault_string=str(fault_string) if fault_string else "Unknown fault",
        fault_code=str(fault_code) if fault_code else None,
        fault_type=fault_type,
        status_code=status_code,
        operation=operation,
    )


def extract_fault_text(raw: Union[str, bytes, None]) -> Optional[str]:
    """Best-effort faultstring extraction from an error response body."""
    if not raw:
        return None
    try:
        parse_envelope(raw)
    except RemoteFault as fault:
        return fault.fault_string
    except MalformedResponseError:
        text = raw.decode('utf-8', errors='replace') if isinstance(raw, bytes) else raw
        match = _FAULTSTRING_RE.search(text)
        if match:
            return unescape(match.group(1).strip(), _XML_UNENTITIES)
    return None


# =============================================================================
# Value normalization
# =============================================================================

def as_list(value: Any) -> List[Any]:
    """Normalize single-vs-repeated element cardinality into a list."""
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def unwrap_scalar(value: Any) -> Any:
    """
    Extract the scalar from either representation a property value can take.

    A value arrives either as a raw scalar ("poweredOn") or wrapped: an
    ObjectRef exposing the id, or a dict exposing the scalar under 'val'.
    Every resolved property value is read through this function.
    """
    if isinstance(value, ObjectRef):
        return value.value
    if isinstance(value, dict) and 'val' in value:
        return unwrap_scalar(value['val'])
    return value


def collect_refs(value: Any) -> List[ObjectRef]:
    """Flatten a property value (single ref, ArrayOfManagedObjectReference, text) into refs."""
    if value is None:
        return []
    if isinstance(value, ObjectRef):
        return [value] if value.value else []
    if isinstance(value, list):
        refs: List[ObjectRef] = []
        for item in value:
            refs.extend(collect_refs(item))
        return refs
    if isinstance(value, dict):
        refs = []
        for item in value.values():
            refs.extend(collect_refs(item))
        return refs
    if isinstance(value, str) and value.strip():
        return [ObjectRef(value.strip())]
    return []
