import logging
import unittest
from unittest import mock

import requests

from vcenter_soap.envelope import build_envelope, login_payload, retrieve_service_content_payload
from vcenter_soap.errors import RemoteFault, SoapTimeoutError, TransportError, VCenterSoapError
from vcenter_soap.transport import SoapTransport

from fake_vcenter import FakeResponse, soap_fault, soap_response

ENDPOINT = "https://vc.example.com/sdk"
OK_BODY = soap_response('<RetrieveServiceContentResponse xmlns="urn:vim25"><returnval/></RetrieveServiceContentResponse>')


class SoapTransportTests(unittest.TestCase):
    def setUp(self):
        self.http = mock.Mock()
        self.http.post.return_value = FakeResponse(200, OK_BODY)
        self.logger = logging.getLogger("test.transport")
        self.transport = SoapTransport(ENDPOINT, self.http, timeout_ms=2500, logger=self.logger)

    def _sent_headers(self, call_index=-1):
        return self.http.post.call_args_list[call_index].kwargs['headers']

    def test_protocol_headers_and_exact_content_length(self):
        """Content-Length equals the UTF-8 byte length, not the character count."""
        body = build_envelope(login_payload('SessionManager', 'jürgen', 'pässwörd'))
        self.transport.post(body, 'Login')

        kwargs = self.http.post.call_args.kwargs
        headers = kwargs['headers']
        self.assertEqual(headers['Content-Type'], 'text/xml; charset=utf-8')
        self.assertEqual(headers['SOAPAction'], 'urn:vim25/7.0')
        self.assertEqual(headers['Content-Length'], str(len(body.encode('utf-8'))))
        self.assertNotEqual(headers['Content-Length'], str(len(body)))
        self.assertNotIn('Cookie', headers)
        self.assertEqual(kwargs['data'], body.encode('utf-8'))

    def test_redirects_disabled_and_timeout_in_seconds(self):
        self.transport.post(build_envelope(retrieve_service_content_payload()), 'RetrieveServiceContent')
        kwargs = self.http.post.call_args.kwargs
        self.assertFalse(kwargs['allow_redirects'])
        self.assertEqual(kwargs['timeout'], 2.5)
        self.assertEqual(self.http.post.call_args.args[0], ENDPOINT)

    def test_session_cookie_captured_and_replayed(self):
        """The vmware_soap_session cookie is captured and sent on later requests."""
        self.http.post.return_value = FakeResponse(
            200, OK_BODY,
            headers={'Set-Cookie': 'vmware_soap_session="abc123"; Path=/; HttpOnly; Secure;'},
        )
        self.transport.post(OK_BODY, 'Login')
        self.assertEqual(self.transport.session_token, '"abc123"')
        self.assertTrue(self.transport.has_session)

        self.http.post.return_value = FakeResponse(200, OK_BODY)
        self.transport.post(OK_BODY, 'RetrievePropertiesEx')
        self.assertEqual(self._sent_headers()['Cookie'], 'vmware_soap_session="abc123"')
        # No Set-Cookie on the second response: token unchanged
        self.assertEqual(self.transport.session_token, '"abc123"')

    def test_session_cookie_overwritten_by_later_response(self):
        self.transport.session_token = 'old'
        self.http.post.return_value = FakeResponse(
            200, OK_BODY, headers={'Set-Cookie': 'other=1; Path=/, vmware_soap_session=new; Path=/'},
        )
        self.transport.post(OK_BODY, 'RetrievePropertiesEx')
        self.assertEqual(self.transport.session_token, 'new')

    def test_cookie_with_session_name_suffix_ignored(self):
        """Only a cookie named exactly vmware_soap_session is taken as the token."""
        self.http.post.return_value = FakeResponse(
            200, OK_BODY, headers={'Set-Cookie': 'old_vmware_soap_session=stale; Path=/'},
        )
        self.transport.post(OK_BODY, 'Login')
        self.assertFalse(self.transport.has_session)

        self.http.post.return_value = FakeResponse(
            200, OK_BODY, headers={'Set-Cookie': 'old_vmware_soap_session=stale; Path=/, vmware_soap_session=fresh; Path=/'},
        )
        self.transport.post(OK_BODY, 'Login')
        self.assertEqual(self.transport.session_token, 'fresh')

    def test_unrelated_cookie_ignored(self):
        self.http.post.return_value = FakeResponse(200, OK_BODY, headers={'Set-Cookie': 'JSESSIONID=xyz; Path=/'})
        self.transport.post(OK_BODY, 'Login')
        self.assertFalse(self.transport.has_session)

    def test_redirect_is_transport_error(self):
        """3xx responses are never followed and carry a routing hint."""
        self.http.post.return_value = FakeResponse(302, '', headers={'Location': 'https://vc.example.com/ui/'})
        with self.assertRaises(TransportError) as ctx:
            self.transport.post(OK_BODY, 'RetrieveServiceContent')
        self.assertEqual(ctx.exception.status_code, 302)
        self.assertIn('redirect', ctx.exception.message.lower())
        self.assertIn('https://vc.example.com/ui/', ctx.exception.message)
        self.assertEqual(self.http.post.call_count, 1)

    def test_not_found_is_transport_error(self):
        self.http.post.return_value = FakeResponse(404, '<html>Not Found</html>')
        with self.assertRaises(TransportError) as ctx:
            self.transport.post(OK_BODY, 'RetrieveServiceContent')
        self.assertEqual(ctx.exception.status_code, 404)
        self.assertIn('server URL', ctx.exception.message)
        self.assertEqual(ctx.exception.operation, 'RetrieveServiceContent')

    def test_server_error_with_fault_is_remote_fault(self):
        """HTTP 500 carrying a well-formed SOAP fault surfaces the faultstring verbatim."""
        self.http.post.return_value = FakeResponse(500, soap_fault('Permission to perform this operation was denied.', 'NoPermissionFault'))
        with self.assertRaises(RemoteFault) as ctx:
            self.transport.post(OK_BODY, 'RetrievePropertiesEx')
        fault = ctx.exception
        self.assertEqual(fault.fault_string, 'Permission to perform this operation was denied.')
        self.assertEqual(fault.fault_type, 'NoPermissionFault')
        self.assertEqual(fault.status_code, 500)
        self.assertEqual(str(fault), 'RetrievePropertiesEx: Permission to perform this operation was denied.')

    def test_server_error_without_fault_is_transport_error(self):
        self.http.post.return_value = FakeResponse(500, 'upstream connect error ' + 'x' * 400)
        with self.assertRaises(TransportError) as ctx:
            self.transport.post(OK_BODY, 'RetrievePropertiesEx')
        self.assertEqual(ctx.exception.status_code, 500)
        self.assertTrue(ctx.exception.snippet.startswith('upstream connect error'))
        self.assertLessEqual(len(ctx.exception.snippet), 200)

    def test_server_error_with_broken_fault_prefers_faultstring(self):
        self.http.post.return_value = FakeResponse(500, '<soap:Fault><faultstring>Session expired</faultstring>')
        with self.assertRaises(TransportError) as ctx:
            self.transport.post(OK_BODY, 'RetrievePropertiesEx')
        self.assertEqual(ctx.exception.snippet, 'Session expired')

    def test_other_status_is_transport_error(self):
        self.http.post.return_value = FakeResponse(503, '', reason='Service Unavailable')
        with self.assertRaises(TransportError) as ctx:
            self.transport.post(OK_BODY, 'RetrieveServiceContent')
        self.assertEqual(ctx.exception.status_code, 503)
        self.assertIn('Service Unavailable', ctx.exception.message)

    def test_timeout_is_distinct_error(self):
        """Deadline overruns raise SoapTimeoutError, usable as a builtin TimeoutError."""
        self.http.post.side_effect = requests.exceptions.ReadTimeout("read timed out")
        with self.assertRaises(SoapTimeoutError) as ctx:
            self.transport.post(OK_BODY, 'RetrievePropertiesEx')
        self.assertIsInstance(ctx.exception, TimeoutError)
        self.assertIsInstance(ctx.exception, VCenterSoapError)
        self.assertIn('2500', ctx.exception.message)

    def test_connection_failure_is_transport_error(self):
        self.http.post.side_effect = requests.exceptions.ConnectionError("connection refused")
        with self.assertRaises(TransportError) as ctx:
            self.transport.post(OK_BODY, 'RetrieveServiceContent')
        self.assertIsNone(ctx.exception.status_code)
        self.assertNotIsInstance(ctx.exception, SoapTimeoutError)

    def test_unsupported_operation_rejected(self):
        with self.assertRaises(ValueError):
            self.transport.post(OK_BODY, 'Destroy_Task')
        self.http.post.assert_not_called()

    def test_clear_session(self):
        self.transport.session_token = 'abc'
        self.transport.clear_session()
        self.assertFalse(self.transport.has_session)
        self.assertIsNone(self.transport.session_token)


class TransportDebugLoggingTests(unittest.TestCase):
    def setUp(self):
        self.http = mock.Mock()
        self.http.post.return_value = FakeResponse(200, OK_BODY)
        self.logger = logging.getLogger("test.transport.debug")

    def test_single_debug_line_per_instance(self):
        """Debug mode logs the first request only, with the password and cookie redacted."""
        transport = SoapTransport(ENDPOINT, self.http, logger=self.logger, debug=True)
        transport.session_token = 'secret-token'

        with self.assertLogs(self.logger, level='INFO') as logs:
            transport.post(build_envelope(login_payload('SessionManager', 'admin', 'hunter2')), 'Login')
            transport.post(OK_BODY, 'RetrievePropertiesEx')
            transport.post(OK_BODY, 'RetrievePropertiesEx')

        self.assertEqual(len(logs.records), 1)
        line = logs.output[0]
        self.assertIn('operation=Login', line)
        self.assertIn(ENDPOINT, line)
        self.assertNotIn('hunter2', line)
        self.assertNotIn('secret-token', line)

    def test_debug_state_is_per_instance(self):
        first = SoapTransport(ENDPOINT, self.http, logger=self.logger, debug=True)
        second = SoapTransport(ENDPOINT, self.http, logger=self.logger, debug=True)

        with self.assertLogs(self.logger, level='INFO') as logs:
            first.post(OK_BODY, 'RetrieveServiceContent')
            first.post(OK_BODY, 'RetrieveServiceContent')
            second.post(OK_BODY, 'RetrieveServiceContent')

        self.assertEqual(len(logs.records), 2)

    def test_no_debug_output_when_disabled(self):
        transport = SoapTransport(ENDPOINT, self.http, logger=self.logger, debug=False)
        with mock.patch.object(self.logger, 'info') as info:
            transport.post(OK_BODY, 'RetrieveServiceContent')
        info.assert_not_called()


if __name__ == "__main__":
    unittest.main()
