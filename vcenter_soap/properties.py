"""
vCenter PropertyCollector Access

Issues RetrievePropertiesEx requests for a batch of object refs and
normalizes the reply into ObjectContent records:

- `objects` / `propSet` may be a bare element or a list depending on
  cardinality; both are normalized to lists
- values are unwrapped into plain scalars (props) and flattened into
  object refs (refs)
- paginated results are followed with ContinueRetrievePropertiesEx
"""

import logging
from typing import Any, Dict, Iterator, List, Optional, Sequence, TypeVar

from vcenter_soap.config import PROPERTY_BATCH_SIZE
from vcenter_soap.envelope import (
    as_list,
    build_envelope,
    collect_refs,
    continue_retrieve_properties_payload,
    parse_envelope,
    retrieve_properties_payload,
    unwrap_scalar,
)
from vcenter_soap.errors import ProtocolError
from vcenter_soap.models import ObjectContent, ObjectRef

logger = logging.getLogger(__name__)

T = TypeVar('T')


def chunked(items: Sequence[T], size: int = PROPERTY_BATCH_SIZE) -> Iterator[List[T]]:
    """Split a batch into lists of at most `size` items."""
    if size <= 0:
        raise ValueError("Chunk size must be positive")
    for start in range(0, len(items), size):
        yield list(items[start:start + size])


def _parse_object_content(oc: Any) -> Optional[ObjectContent]:
    """
    Parse one ObjectContent element into an ObjectContent model.

    Args:
        oc: dict parsed from <objects>

    Returns:
        ObjectContent, or None when the element carries no object ref
    """
    if not isinstance(oc, dict):
        return None

    obj = oc.get('obj')
    obj_value = unwrap_scalar(obj)
    if not isinstance(obj_value, str) or not obj_value:
        return None
    obj_type = obj.type if isinstance(obj, ObjectRef) else None

    props: Dict[str, Any] = {}
    refs: Dict[str, List[ObjectRef]] = {}
    for prop in as_list(oc.get('propSet')):
        if not isinstance(prop, dict):
            continue
        name = unwrap_scalar(prop.get('name'))
        if not name:
            continue
        raw_value = prop.get('val')
        props[name] = unwrap_scalar(raw_value)
        refs[name] = collect_refs(raw_value)

    missing = []
    for entry in as_list(oc.get('missingSet')):
        if isinstance(entry, dict) and entry.get('path'):
            missing.append(str(unwrap_scalar(entry['path'])))

    return ObjectContent(obj=obj_value, obj_type=obj_type, props=props, refs=refs, missing=missing)


def _response_element(body: Dict[str, Any], name: str) -> Any:
    """Find `<name>` in the body regardless of the case of its first letter."""
    for key, value in body.items():
        if key.lower() == name.lower():
            return value
    raise KeyError(name)


class PropertyCollector:
    """
    Thin wrapper around the server's PropertyCollector managed object.

    Callers are responsible for chunking large ref lists (see chunked()).
    """

    def __init__(self, transport, collector_ref: str):
        """
        Args:
            transport: SoapTransport (or anything with post(body, operation))
            collector_ref: ServiceContent.propertyCollector moref
        """
        self.transport = transport
        self.collector_ref = collector_ref

    def retrieve_properties(
        self,
        object_type: str,
        paths: Sequence[str],
        refs: Sequence[str],
    ) -> List[ObjectContent]:
        """
        Retrieve `paths` of every object in `refs`, all of type `object_type`.

        Returns:
            List[ObjectContent] in server order; objects the server skipped are absent

        Raises:
            ProtocolError: response lacks RetrievePropertiesExResponse
        """
        refs = list(refs)
        if not refs:
            return []

        operation = 'RetrievePropertiesEx'
        body = build_envelope(retrieve_properties_payload(self.collector_ref, object_type, list(paths), refs))
        contents, token = self._call(body, operation)

        pages = 1
        while token:
            operation = 'ContinueRetrievePropertiesEx'
            body = build_envelope(continue_retrieve_properties_payload(self.collector_ref, token))
            page, token = self._call(body, operation)
            contents.extend(page)
            pages += 1

        if pages > 1:
            logger.debug(f"RetrievePropertiesEx {object_type}: {len(contents)} objects across {pages} pages")

        return contents

    def _call(self, body: str, operation: str):
        raw = self.transport.post(body, operation)
        parsed = parse_envelope(raw, operation=operation)

        try:
            response = _response_element(parsed, f"{operation}Response")
        except KeyError:
            raise ProtocolError(f"Unexpected response: {operation}Response not found", operation=operation)

        # An empty result set arrives as a bare <...Response/> element
        if not isinstance(response, dict):
            return [], None

        returnval = response.get('returnval')
        if not isinstance(returnval, dict):
            return [], None

        contents = []
        for oc in as_list(returnval.get('objects')):
            parsed_oc = _parse_object_content(oc)
            if parsed_oc is not None:
                contents.append(parsed_oc)

        token = unwrap_scalar(returnval.get('token'))
        return contents, (token or None)
