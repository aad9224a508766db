"""
vCenter Inventory Traversal

Breadth-first discovery of virtual machines:

    rootFolder -> (datacenter folders) -> Datacenter -> vmFolder -> Folder* -> VirtualMachine

Uses an explicit FIFO queue rather than recursion so that memory stays
bounded and the caller can stop the walk as soon as it has enough results.
Every folder is fetched at most once and every VM is recorded once; the first
datacenter that reaches a VM owns its attribution.
"""

import json
import logging
from collections import deque
from typing import Callable, Deque, Dict, List, Optional, Set, Tuple

from vcenter_soap.models import (
    DatacenterInfo,
    DiscoveredVM,
    ObjectRef,
    TraversalResult,
    TraversalStats,
)
from vcenter_soap.properties import PropertyCollector, chunked

# Type tags that say nothing about what the object is
GENERIC_REF_TYPES = {None, '', 'ManagedObjectReference', 'ManagedEntity'}

# Reference-id conventions used only when the type tag is missing or generic.
# These are a vCenter implementation detail, not a contract.
REF_PREFIX_TYPES = (
    ('datacenter-', 'Datacenter'),
    ('group-', 'Folder'),
    ('vm-', 'VirtualMachine'),
)

VM_FOLDER_PREFIX = 'group-v'

DEBUG_SAMPLE_SIZE = 5


def classify_ref(ref: ObjectRef) -> Optional[str]:
    """Return the object type of a ref: its explicit tag, else the id-prefix fallback."""
    if ref.type not in GENERIC_REF_TYPES:
        return ref.type

    for prefix, type_name in REF_PREFIX_TYPES:
        if ref.value.startswith(prefix):
            return type_name
    return None


class InventoryTraversal:
    """Walks the inventory tree below one root folder."""

    def __init__(
        self,
        collector: PropertyCollector,
        root_folder: str,
        debug: bool = False,
        logger: Optional[logging.Logger] = None,
    ):
        self.collector = collector
        self.root_folder = root_folder
        self.debug = debug
        self.logger = logger or logging.getLogger(__name__)

    def _log_debug(self, message: str, details: Dict):
        if self.debug:
            self.logger.info(f"{message}: {json.dumps(details, default=str)}")

    def _children(self, folder: str) -> List[ObjectRef]:
        """Direct childEntity refs of one folder."""
        children: List[ObjectRef] = []
        for oc in self.collector.retrieve_properties('Folder', ['childEntity'], [folder]):
            children.extend(oc.refs.get('childEntity', []))
        return children

    def find_datacenters(self) -> List[str]:
        """
        Datacenter refs below the root folder, in discovery order.

        Root-level folders (datacenter folders) are expanded as well.
        """
        datacenters: List[str] = []
        seen: Set[str] = set()
        visited: Set[str] = set()
        queue: Deque[str] = deque([self.root_folder])

        while queue:
            folder = queue.popleft()
            if folder in visited:
                continue
            visited.add(folder)

            for child in self._children(folder):
                child_type = classify_ref(child)
                if child_type == 'Datacenter':
                    if child.value not in seen:
                        seen.add(child.value)
                        datacenters.append(child.value)
                elif child_type == 'Folder':
                    queue.append(child.value)

        return datacenters

    def datacenter_details(self, datacenter_refs: List[str]) -> List[DatacenterInfo]:
        """Fetch name and vmFolder for each datacenter in one batched call per chunk."""
        infos: Dict[str, DatacenterInfo] = {}

        for chunk in chunked(datacenter_refs):
            for oc in self.collector.retrieve_properties('Datacenter', ['name', 'vmFolder'], chunk):
                name = oc.props.get('name')
                if not isinstance(name, str) or not name:
                    name = oc.obj

                folder_refs = oc.refs.get('vmFolder', [])
                vm_folder = folder_refs[0].value if folder_refs else None
                if not vm_folder:
                    # Fall back to any VM-folder-looking ref in the reply
                    for refs in oc.refs.values():
                        candidate = next((r.value for r in refs if r.value.startswith(VM_FOLDER_PREFIX)), None)
                        if candidate:
                            vm_folder = candidate
                            break

                infos[oc.obj] = DatacenterInfo(moref=oc.obj, name=name, vm_folder=vm_folder)

        return [infos[ref] for ref in datacenter_refs if ref in infos]

    def discover(
        self,
        limit: Optional[int] = None,
        should_stop: Optional[Callable[[], bool]] = None,
        on_discovered: Optional[Callable[[List[DiscoveredVM]], None]] = None,
    ) -> TraversalResult:
        """
        Discover VMs breadth-first.

        Args:
            limit: Stop once this many VMs have been discovered
            should_stop: Checked before each folder is dequeued; True ends the walk
            on_discovered: Called with the VMs newly found in each folder

        Returns:
            TraversalResult with discovered VMs (discovery order) and stats.
            The walk is not resumable; a new call restarts from the root.
        """
        stats = TraversalStats(root_folder=self.root_folder)
        result = TraversalResult(stats=stats)

        def stopped() -> bool:
            if should_stop is not None and should_stop():
                return True
            return limit is not None and len(result.vms) >= limit

        if stopped():
            return result

        datacenter_refs = self.find_datacenters()
        stats.datacenter_count = len(datacenter_refs)
        stats.datacenter_samples = datacenter_refs[:DEBUG_SAMPLE_SIZE]
        self._log_debug('Datacenters discovered', {
            'rootFolder': self.root_folder,
            'count': stats.datacenter_count,
            'samples': stats.datacenter_samples,
        })

        queue: Deque[Tuple[str, str, str]] = deque()
        for dc in self.datacenter_details(datacenter_refs):
            if not dc.vm_folder:
                self.logger.warning(f"Datacenter {dc.name} ({dc.moref}) has no vmFolder; skipping")
                continue
            stats.vm_folders[dc.moref] = dc.vm_folder
            queue.append((dc.vm_folder, dc.name, dc.moref))
            self._log_debug('Datacenter details', {
                'datacenterMoRef': dc.moref,
                'datacenterName': dc.name,
                'vmFolderMoRef': dc.vm_folder,
            })

        visited_folders: Set[str] = set()
        seen_vms: Set[str] = set()

        while queue and not stopped():
            folder, dc_name, dc_ref = queue.popleft()
            if folder in visited_folders:
                continue
            visited_folders.add(folder)
            stats.folders_visited += 1

            new_vms: List[DiscoveredVM] = []
            for child in self._children(folder):
                child_type = classify_ref(child)
                if child_type == 'Folder':
                    queue.append((child.value, dc_name, dc_ref))
                elif child_type == 'VirtualMachine':
                    if child.value in seen_vms:
                        continue
                    if limit is not None and len(result.vms) >= limit:
                        continue
                    seen_vms.add(child.value)
                    vm = DiscoveredVM(moref=child.value, datacenter_moref=dc_ref, datacenter_name=dc_name)
                    result.vms.append(vm)
                    new_vms.append(vm)

            if new_vms and on_discovered is not None:
                on_discovered(new_vms)

        stats.vms_discovered = len(result.vms)
        self._log_debug('Folder traversal stats', {
            'foldersVisited': stats.folders_visited,
            'vmsDiscovered': stats.vms_discovered,
            'samples': [vm.moref for vm in result.vms[:DEBUG_SAMPLE_SIZE]],
        })

        return result
