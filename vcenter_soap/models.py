"""
Data models shared by the session, traversal and search components.
"""

from enum import Enum
from typing import Any, Dict, List, NamedTuple, Optional

from pydantic import BaseModel, Field

from vcenter_soap.config import DEFAULT_MAX_RESULTS


class ObjectRef(NamedTuple):
    """Managed object reference: opaque id plus the server's type tag."""
    value: str
    type: Optional[str] = None


class SessionState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    SERVICE_DISCOVERED = "service_discovered"
    AUTHENTICATED = "authenticated"


class MatchMode(str, Enum):
    EXACT = "exact"
    CONTAINS = "contains"


class AboutInfo(BaseModel):
    """Server product metadata from ServiceContent.about"""
    api_type: str = ""
    full_name: str = ""
    name: str = ""
    vendor: str = ""
    version: str = ""
    build: str = ""
    instance_uuid: Optional[str] = None


class ServiceContent(BaseModel):
    """Bootstrap object returned by RetrieveServiceContent"""
    about: AboutInfo
    session_manager: str
    root_folder: Optional[str] = None
    property_collector: Optional[str] = None


class ConnectionSummary(BaseModel):
    connected: bool
    api_type: str
    full_name: str
    version: str
    build: str


class ObjectContent(BaseModel):
    """One object from a RetrievePropertiesEx result with its resolved properties"""
    obj: str
    obj_type: Optional[str] = None
    # property path -> plain value (scalars unwrapped)
    props: Dict[str, Any] = Field(default_factory=dict)
    # property path -> every object reference found in the value
    refs: Dict[str, List[ObjectRef]] = Field(default_factory=dict)
    # property paths the server could not resolve (missingSet)
    missing: List[str] = Field(default_factory=list)


class DatacenterInfo(BaseModel):
    moref: str
    name: str
    vm_folder: Optional[str] = None


class DiscoveredVM(BaseModel):
    moref: str
    datacenter_moref: str
    datacenter_name: str


class TraversalStats(BaseModel):
    """Diagnostic counters, materialized only when debug is enabled"""
    root_folder: Optional[str] = None
    datacenter_count: int = 0
    datacenter_samples: List[str] = Field(default_factory=list)
    vm_folders: Dict[str, str] = Field(default_factory=dict)
    folders_visited: int = 0
    vms_discovered: int = 0
    first_match_moref: Optional[str] = None
    first_match_name: Optional[str] = None


class TraversalResult(BaseModel):
    vms: List[DiscoveredVM] = Field(default_factory=list)
    stats: TraversalStats = Field(default_factory=TraversalStats)


class SearchOptions(BaseModel):
    name_query: str
    match_mode: MatchMode = MatchMode.CONTAINS
    max_results: int = Field(default=DEFAULT_MAX_RESULTS, ge=0)
    include_power_state: bool = True
    # Covers both the VM uuid and its .vmx storage path
    include_uuid: bool = True
    debug: bool = False


class SearchResult(BaseModel):
    items: List[Dict[str, Any]] = Field(default_factory=list)
    debug: Optional[TraversalStats] = None

    def to_items(self) -> List[Dict[str, Any]]:
        """Flatten into output items: one per record plus a trailing debug item."""
        output = [dict(item) for item in self.items]
        if self.debug is not None:
            output.append({"debug": self.debug.model_dump()})
        return output
