"""
VM name search: matching and result assembly on top of the traversal.

Names are fetched in cheap batches as the traversal discovers VMs, so the
walk can stop as soon as enough matches exist. The expensive detail fetch
runs only for the matched VMs.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from vcenter_soap.config import PROPERTY_BATCH_SIZE
from vcenter_soap.inventory import InventoryTraversal
from vcenter_soap.models import DiscoveredVM, MatchMode, SearchOptions, SearchResult
from vcenter_soap.properties import PropertyCollector, chunked

POWER_STATE_PATH = 'runtime.powerState'
UUID_PATH = 'summary.config.uuid'
VM_PATH_NAME_PATH = 'summary.config.vmPathName'


def name_matches(name: str, query: str, mode: MatchMode) -> bool:
    """exact: case-sensitive equality; contains: case-insensitive substring."""
    if mode == MatchMode.EXACT:
        return name == query
    return query.lower() in name.lower()


class VMSearch:
    def __init__(
        self,
        collector: PropertyCollector,
        traversal: InventoryTraversal,
        logger: Optional[logging.Logger] = None,
    ):
        self.collector = collector
        self.traversal = traversal
        self.logger = logger or logging.getLogger(__name__)

    def run(self, options: SearchOptions) -> SearchResult:
        matched: List[DiscoveredVM] = []
        names: Dict[str, str] = {}

        def cap_reached() -> bool:
            return len(matched) >= options.max_results

        def on_discovered(vms: List[DiscoveredVM]):
            # Match after every folder so the count is current before the next dequeue
            for batch in chunked(vms, PROPERTY_BATCH_SIZE):
                if cap_reached():
                    break
                self._match_batch(batch, options, matched, names)

        traversal = self.traversal.discover(should_stop=cap_reached, on_discovered=on_discovered)

        if options.debug:
            self.logger.info('Matched VMs: ' + json.dumps({
                'matchedCount': len(matched),
                'samples': [names[vm.moref] for vm in matched[:5]],
            }))

        items = self._assemble(matched, names, options)

        debug = None
        if options.debug:
            debug = traversal.stats
            if items:
                debug.first_match_moref = items[0]['moref']
                debug.first_match_name = items[0]['name']

        return SearchResult(items=items, debug=debug)

    def _match_batch(
        self,
        batch: List[DiscoveredVM],
        options: SearchOptions,
        matched: List[DiscoveredVM],
        names: Dict[str, str],
    ):
        """Fetch names for one batch and append matches in discovery order."""
        contents = self.collector.retrieve_properties('VirtualMachine', ['name'], [vm.moref for vm in batch])
        name_by_ref = {oc.obj: oc.props.get('name') for oc in contents}

        for vm in batch:
            name = name_by_ref.get(vm.moref)
            if not isinstance(name, str):
                continue
            if name_matches(name, options.name_query, options.match_mode):
                matched.append(vm)
                names[vm.moref] = name
                if len(matched) >= options.max_results:
                    break

    def _assemble(
        self,
        matched: List[DiscoveredVM],
        names: Dict[str, str],
        options: SearchOptions,
    ) -> List[Dict[str, Any]]:
        if not matched:
            return []

        details: Dict[str, Dict[str, Any]] = {}
        if options.include_power_state or options.include_uuid:
            paths = ['name']
            if options.include_power_state:
                paths.append(POWER_STATE_PATH)
            if options.include_uuid:
                paths.extend([UUID_PATH, VM_PATH_NAME_PATH])

            for chunk in chunked([vm.moref for vm in matched]):
                for oc in self.collector.retrieve_properties('VirtualMachine', paths, chunk):
                    details[oc.obj] = oc.props

        records = []
        for vm in matched:
            props = details.get(vm.moref, {})
            name = props.get('name')
            if not isinstance(name, str) or not name:
                name = names[vm.moref]

            record: Dict[str, Any] = {
                'moref': vm.moref,
                'name': name,
                'datacenter_moref': vm.datacenter_moref,
                'datacenter_name': vm.datacenter_name,
            }
            optional = []
            if options.include_power_state:
                optional.append(('power_state', POWER_STATE_PATH))
            if options.include_uuid:
                optional.extend([('uuid', UUID_PATH), ('vm_path_name', VM_PATH_NAME_PATH)])
            # Keys the server left unresolved are omitted, never null
            for key, path in optional:
                value = props.get(path)
                if isinstance(value, str):
                    record[key] = value
            records.append(record)

        return records[:options.max_results]
