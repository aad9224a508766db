import unittest
from unittest import mock

from vcenter_soap.errors import ProtocolError
from vcenter_soap.models import ObjectRef
from vcenter_soap.properties import PropertyCollector, chunked
from vcenter_soap.transport import SoapTransport

from fake_vcenter import SESSION_TOKEN, FakeVCenter, soap_response


def _authenticated_collector(fake: FakeVCenter) -> PropertyCollector:
    transport = SoapTransport("https://vc.example.com/sdk", fake)
    transport.session_token = SESSION_TOKEN
    return PropertyCollector(transport, 'propertyCollector')


class ChunkedTests(unittest.TestCase):
    def test_chunks_at_batch_size(self):
        refs = [f'vm-{i}' for i in range(250)]
        chunks = list(chunked(refs))
        self.assertEqual([len(c) for c in chunks], [100, 100, 50])
        self.assertEqual(sum(chunks, []), refs)

    def test_empty_and_invalid_size(self):
        self.assertEqual(list(chunked([])), [])
        with self.assertRaises(ValueError):
            list(chunked(['a'], size=0))


class RetrievePropertiesTests(unittest.TestCase):
    def setUp(self):
        self.fake = FakeVCenter()
        self.fake.add_datacenter('datacenter-2', 'East', 'group-v3')
        for i in range(5):
            self.fake.add_vm(f'vm-{i}', f'web-0{i}', 'group-v3', power_state='poweredOff' if i % 2 else 'poweredOn')
        self.collector = _authenticated_collector(self.fake)

    def test_single_object_single_property(self):
        """A lone object / propSet (no list in the XML) still yields a list of records."""
        contents = self.collector.retrieve_properties('VirtualMachine', ['name'], ['vm-0'])

        self.assertEqual(len(contents), 1)
        self.assertEqual(contents[0].obj, 'vm-0')
        self.assertEqual(contents[0].obj_type, 'VirtualMachine')
        self.assertEqual(contents[0].props, {'name': 'web-00'})

    def test_multiple_objects_multiple_properties(self):
        contents = self.collector.retrieve_properties(
            'VirtualMachine', ['name', 'runtime.powerState'], ['vm-0', 'vm-1', 'vm-2'],
        )
        self.assertEqual([c.obj for c in contents], ['vm-0', 'vm-1', 'vm-2'])
        self.assertEqual(contents[1].props, {'name': 'web-01', 'runtime.powerState': 'poweredOff'})
        self.assertEqual(len(self.fake.calls), 1)
        self.assertEqual(self.fake.calls[0]['paths'], ['name', 'runtime.powerState'])

    def test_reference_values_collected(self):
        contents = self.collector.retrieve_properties('Datacenter', ['name', 'vmFolder'], ['datacenter-2'])
        self.assertEqual(contents[0].props['vmFolder'], 'group-v3')
        self.assertEqual(contents[0].refs['vmFolder'], [ObjectRef('group-v3', 'Folder')])

        folder = self.collector.retrieve_properties('Folder', ['childEntity'], ['group-v3'])[0]
        self.assertEqual([r.value for r in folder.refs['childEntity']], [f'vm-{i}' for i in range(5)])
        self.assertTrue(all(r.type == 'VirtualMachine' for r in folder.refs['childEntity']))

    def test_pagination_token_followed(self):
        """Results split across pages are concatenated via ContinueRetrievePropertiesEx."""
        self.fake.page_size = 2
        contents = self.collector.retrieve_properties('VirtualMachine', ['name'], [f'vm-{i}' for i in range(5)])

        self.assertEqual([c.obj for c in contents], [f'vm-{i}' for i in range(5)])
        self.assertEqual(
            self.fake.operations(),
            ['RetrievePropertiesEx', 'ContinueRetrievePropertiesEx', 'ContinueRetrievePropertiesEx'],
        )
        continue_body = self.fake.requests[1]['data'].decode('utf-8')
        self.assertIn('<token>token-1</token>', continue_body)

    def test_empty_refs_send_nothing(self):
        self.assertEqual(self.collector.retrieve_properties('VirtualMachine', ['name'], []), [])
        self.assertEqual(self.fake.requests, [])

    def test_empty_result_set(self):
        """Unknown refs come back as a bare response element."""
        self.assertEqual(self.collector.retrieve_properties('VirtualMachine', ['name'], ['vm-404']), [])


class ResponseShapeTests(unittest.TestCase):
    def setUp(self):
        self.transport = mock.Mock()
        self.collector = PropertyCollector(self.transport, 'propertyCollector')

    def test_missing_set_and_lowercase_response_name(self):
        self.transport.post.return_value = soap_response(
            '<retrievePropertiesExResponse xmlns="urn:vim25"><returnval><objects>'
            '<obj type="VirtualMachine">vm-9</obj>'
            '<propSet><name>name</name><val xsi:type="xsd:string">db-01</val></propSet>'
            '<missingSet><path>summary.config.uuid</path><fault><fault xsi:type="NoPermission"/></fault></missingSet>'
            '</objects></returnval></retrievePropertiesExResponse>'
        )
        contents = self.collector.retrieve_properties('VirtualMachine', ['name', 'summary.config.uuid'], ['vm-9'])

        self.assertEqual(contents[0].props, {'name': 'db-01'})
        self.assertEqual(contents[0].missing, ['summary.config.uuid'])

    def test_wrapped_scalar_values_unwrapped(self):
        self.transport.post.return_value = soap_response(
            '<RetrievePropertiesExResponse xmlns="urn:vim25"><returnval><objects>'
            '<obj type="VirtualMachine">vm-9</obj>'
            '<propSet><name>runtime.powerState</name><val><val>poweredOn</val></val></propSet>'
            '</objects></returnval></RetrievePropertiesExResponse>'
        )
        contents = self.collector.retrieve_properties('VirtualMachine', ['runtime.powerState'], ['vm-9'])
        self.assertEqual(contents[0].props['runtime.powerState'], 'poweredOn')

    def test_missing_response_element_is_protocol_error(self):
        self.transport.post.return_value = soap_response('<SomethingElse xmlns="urn:vim25"/>')
        with self.assertRaises(ProtocolError) as ctx:
            self.collector.retrieve_properties('VirtualMachine', ['name'], ['vm-9'])
        self.assertEqual(ctx.exception.operation, 'RetrievePropertiesEx')


if __name__ == "__main__":
    unittest.main()
