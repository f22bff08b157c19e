import logging
import threading
import unittest
from concurrent.futures import ThreadPoolExecutor

import httpx

from apigsigner import ApigSigner, RequestSigner, SignError
from authtransport import (
    PROJECT_ID_HEADER,
    SECURITY_TOKEN_HEADER,
    TRACE,
    ConfigError,
    Credential,
    HeaderInjectionTransport,
    SigningTransport,
    build_transport,
)
from httpxlogtransport import HttpxLogTransport

CREDENTIAL = Credential(access_key="AK", secret_key="SK", project_id="proj-1")


class FakeSigner(RequestSigner):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls = []
        self.seen_headers = []
        self._lock = threading.Lock()

    def sign(self, request, access_key, secret_key):
        with self._lock:
            self.calls.append((access_key, secret_key))
            self.seen_headers.append(dict(request.headers))

        if self.fail:
            raise SignError("signer unavailable", request=request)

        request.headers["X-Fake-Signature"] = f"{access_key}:{request.method}"


class EchoTransport(httpx.MockTransport):
    """Returns the request headers as the JSON response body."""

    def __init__(self):
        self.requests = []
        super().__init__(self._echo)

    def _echo(self, request):
        self.requests.append(request)
        return httpx.Response(200, json=dict(request.headers))


def _client(transport: httpx.BaseTransport, **kwargs) -> httpx.Client:
    return httpx.Client(transport=transport, base_url="https://cce.example", **kwargs)


class CredentialTests(unittest.TestCase):
    def test_partial_credential_rejected(self):
        for cred in (
            Credential(access_key="AK", secret_key="SK"),
            Credential(access_key="AK"),
            Credential(secret_key="SK", security_token="tok"),
        ):
            with self.subTest(cred=cred):
                with self.assertRaises(ConfigError):
                    build_transport(cred, None, EchoTransport())

    def test_empty_and_complete_credentials_accepted(self):
        Credential().validate()
        CREDENTIAL.validate()
        Credential(project_id="proj-1").validate()

    def test_repr_hides_secrets(self):
        text = repr(Credential(access_key="AK", secret_key="very-secret", project_id="p", security_token="sess"))
        self.assertNotIn("very-secret", text)
        self.assertNotIn("sess", text)


class ChainCompositionTests(unittest.TestCase):
    def test_full_chain_order(self):
        base = EchoTransport()
        signer = FakeSigner()
        chain = build_transport(CREDENTIAL, {"X-Custom": "v1"}, base, signer=signer)

        self.assertIsInstance(chain, HeaderInjectionTransport)
        self.assertIsInstance(chain.transport, SigningTransport)
        self.assertIs(chain.transport.signer, signer)
        self.assertIsInstance(chain.transport.transport, HttpxLogTransport)
        self.assertIs(chain.transport.transport.transport, base)

    def test_no_header_node_for_empty_headers(self):
        for headers in (None, {}):
            with self.subTest(headers=headers):
                chain = build_transport(CREDENTIAL, headers, EchoTransport(), signer=FakeSigner())
                self.assertIsInstance(chain, SigningTransport)

    def test_unauthenticated_chain_is_logging_only(self):
        base = EchoTransport()
        with self.assertLogs("authtransport", level=TRACE) as cm:
            chain = build_transport(Credential(), None, base)

        self.assertIsInstance(chain, HttpxLogTransport)
        self.assertIs(chain.transport, base)
        self.assertIn("do not use cloud certification transport", cm.output[0])

    def test_default_signer(self):
        chain = build_transport(CREDENTIAL, None, EchoTransport())
        self.assertIsInstance(chain.signer, ApigSigner)

    def test_empty_header_injection_rejected(self):
        with self.assertRaises(ValueError):
            HeaderInjectionTransport(EchoTransport(), {})


class ChainBehaviourTests(unittest.TestCase):
    def test_end_to_end_scenario(self):
        base = EchoTransport()
        signer = FakeSigner()
        chain = build_transport(CREDENTIAL, {"X-Custom": "v1"}, base, signer=signer)

        with _client(chain) as client:
            echoed = client.get("/api/v1/namespaces").json()

        self.assertEqual(signer.calls, [("AK", "SK")])
        self.assertEqual(len(base.requests), 1)
        self.assertEqual(echoed[PROJECT_ID_HEADER.lower()], "proj-1")
        self.assertEqual(echoed["x-custom"], "v1")
        self.assertEqual(echoed["x-fake-signature"], "AK:GET")
        self.assertNotIn(SECURITY_TOKEN_HEADER.lower(), echoed)

    def test_security_token_sent_when_configured(self):
        base = EchoTransport()
        cred = Credential(access_key="AK", secret_key="SK", project_id="proj-1", security_token="sess-1")

        with _client(build_transport(cred, None, base, signer=FakeSigner())) as client:
            echoed = client.get("/api").json()

        self.assertEqual(echoed[SECURITY_TOKEN_HEADER.lower()], "sess-1")

    def test_no_project_means_no_signing(self):
        base = EchoTransport()
        signer = FakeSigner()

        with _client(build_transport(Credential(), {"X-Custom": "v1"}, base, signer=signer)) as client:
            echoed = client.get("/api").json()

        self.assertEqual(signer.calls, [])
        self.assertNotIn(PROJECT_ID_HEADER.lower(), echoed)
        self.assertNotIn(SECURITY_TOKEN_HEADER.lower(), echoed)
        self.assertEqual(echoed["x-custom"], "v1")

    def test_session_token_ignored_without_project(self):
        base = EchoTransport()
        signer = FakeSigner()
        cred = Credential(security_token="sess-1")

        with _client(build_transport(cred, None, base, signer=signer)) as client:
            echoed = client.get("/api").json()

        self.assertEqual(signer.calls, [])
        self.assertNotIn(SECURITY_TOKEN_HEADER.lower(), echoed)
        self.assertNotIn(PROJECT_ID_HEADER.lower(), echoed)

    def test_caller_headers_injected_before_signing(self):
        base = EchoTransport()
        signer = FakeSigner()
        headers = {"X-Custom": "v1", "X-Tenant": "blue"}

        with _client(build_transport(CREDENTIAL, headers, base, signer=signer)) as client:
            client.get("/api")

        self.assertEqual(signer.seen_headers[0]["x-custom"], "v1")
        sent = base.requests[0].headers
        for key, value in headers.items():
            self.assertEqual(sent[key], value)
        self.assertIn("x-fake-signature", sent)

    def test_injected_header_overwrites_existing(self):
        base = EchoTransport()
        chain = build_transport(Credential(), {"X-Custom": "v1"}, base)

        with _client(chain, headers={"X-Custom": "old"}) as client:
            client.get("/api", headers={"X-Custom": "older"})

        self.assertEqual(base.requests[0].headers.get_list("x-custom"), ["v1"])

    def test_sign_failure_never_reaches_base(self):
        base = EchoTransport()
        signer = FakeSigner(fail=True)

        with self.assertLogs("authtransport", level="ERROR"):
            with _client(build_transport(CREDENTIAL, {"X-Custom": "v1"}, base, signer=signer)) as client:
                with self.assertRaises(SignError):
                    client.get("/api")

        self.assertEqual(len(signer.calls), 1)
        self.assertEqual(base.requests, [])

    def test_transport_error_propagates_unchanged(self):
        error = httpx.ReadTimeout("timed out")

        def handler(request):
            raise error

        chain = build_transport(CREDENTIAL, {"X-Custom": "v1"}, httpx.MockTransport(handler), signer=FakeSigner())
        with _client(chain) as client:
            with self.assertRaises(httpx.ReadTimeout) as ctx:
                client.get("/api")

        self.assertIs(ctx.exception, error)

    def test_chain_shared_between_threads(self):
        base = EchoTransport()
        signer = FakeSigner()
        chain = build_transport(
            CREDENTIAL,
            {"X-Custom": "v1"},
            base,
            signer=signer,
            logger=logging.getLogger("tests.authtransport"),
            debug_enabled=lambda: True,
        )

        with _client(chain) as client:
            with ThreadPoolExecutor(max_workers=8) as pool:
                results = list(pool.map(lambda i: client.get(f"/api/{i}").json(), range(32)))

        self.assertEqual(len(signer.calls), 32)
        for echoed in results:
            self.assertEqual(echoed["x-custom"], "v1")
            self.assertEqual(echoed["x-project-id"], "proj-1")


if __name__ == "__main__":
    unittest.main(verbosity=2)
