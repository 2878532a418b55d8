import io
import threading
import time

import pytest

from appreg.core.authentication import (
    AuthenticationOrchestrator,
    Credential,
    MessageWriter,
    require_password_credentials,
)
from appreg.core.exceptions import MissingCredentialError, TokenAcquisitionError

LOGIN = "https://login.microsoftonline.com"
GRAPH = "https://graph.microsoft.com"
CLIENT_ID = "31359c7f-bd7e-475c-86db-fdb8c937548e"


class FakeMsalApp:
    """Stands in for msal.PublicClientApplication.

    Device polling mimics msal: it keeps polling until a result is available
    or flow["expires_at"] lies in the past.
    """

    def __init__(self, password_result=None, flow=None, device_result=None, poll_delay=0.0):
        self.password_result = password_result
        self.flow = flow if flow is not None else {
            "user_code": "ABCD-EFGH",
            "verification_uri": "https://microsoft.com/devicelogin",
            "message": "To sign in, use a web browser to open https://microsoft.com/devicelogin and enter the code ABCD-EFGH",
            "interval": 0,
            "expires_at": time.time() + 60,
        }
        self.device_result = device_result
        self.poll_delay = poll_delay
        self.password_calls = []
        self.polled = threading.Event()

    def acquire_token_by_username_password(self, username, password, scopes):
        self.password_calls.append((username, password, scopes))
        if isinstance(self.password_result, Exception):
            raise self.password_result
        return self.password_result

    def initiate_device_flow(self, scopes):
        self.device_scopes = scopes
        return self.flow

    def acquire_token_by_device_flow(self, flow):
        self.polled.set()
        deadline = time.time() + self.poll_delay
        while flow["expires_at"] > time.time():
            if time.time() >= deadline and self.device_result is not None:
                return self.device_result
            time.sleep(0.01)
        return {"error": "expired_token", "error_description": "Device code expired"}


def make_orchestrator(app, cancel_event=None, stream=None):
    factory_calls = []

    def factory(client_id, authority):
        factory_calls.append((client_id, authority))
        return app

    orchestrator = AuthenticationOrchestrator(
        "contoso.onmicrosoft.com",
        login_endpoint=LOGIN + "/",
        graph_endpoint=GRAPH,
        client_id=CLIENT_ID,
        cancel_event=cancel_event,
        app_factory=factory,
        message_stream=stream or io.StringIO(),
    )
    return orchestrator, factory_calls


class TestPasswordFlow:
    @pytest.mark.parametrize(
        "username, password, parameter",
        [(None, "pw", "Username"), ("   ", "pw", "Username"), ("admin@contoso.com", None, "Password"), ("admin@contoso.com", "", "Password")],
    )
    def test_missing_credentials_fail_before_any_request(self, username, password, parameter):
        app = FakeMsalApp()
        orchestrator, factory_calls = make_orchestrator(app)

        with pytest.raises(MissingCredentialError) as excinfo:
            orchestrator.authenticate(device_login=False, username=username, password=password)

        assert excinfo.value.parameter == parameter
        assert factory_calls == []

    def test_success(self):
        app = FakeMsalApp(password_result={"access_token": "tok-123"})
        orchestrator, factory_calls = make_orchestrator(app)

        credential = orchestrator.authenticate(device_login=False, username=" admin@contoso.com ", password="pw")

        assert credential == Credential("tok-123", LOGIN, "contoso.onmicrosoft.com")
        assert factory_calls == [(CLIENT_ID, f"{LOGIN}/contoso.onmicrosoft.com")]
        assert app.password_calls == [("admin@contoso.com", "pw", [f"{GRAPH}/.default"])]

    def test_rejected_credentials_are_reported_once(self):
        app = FakeMsalApp(password_result={"error": "invalid_grant", "error_description": "AADSTS50126: bad password"})
        orchestrator, _ = make_orchestrator(app)

        with pytest.raises(TokenAcquisitionError, match="AADSTS50126"):
            orchestrator.acquire_token_by_password("admin@contoso.com", "pw")
        assert len(app.password_calls) == 1

    def test_msal_value_error_is_wrapped(self):
        app = FakeMsalApp(password_result=ValueError("bad authority"))
        orchestrator, _ = make_orchestrator(app)

        with pytest.raises(TokenAcquisitionError, match="bad authority"):
            orchestrator.acquire_token_by_password("admin@contoso.com", "pw")

    def test_token_not_in_repr(self):
        credential = Credential("secret-token", LOGIN, "contoso.onmicrosoft.com")
        assert "secret-token" not in repr(credential)


class TestDeviceCodeFlow:
    def test_success_relays_message(self):
        stream = io.StringIO()
        app = FakeMsalApp(device_result={"access_token": "device-token"})
        orchestrator, _ = make_orchestrator(app, stream=stream)

        credential = orchestrator.authenticate(device_login=True)

        assert credential.access_token == "device-token"
        assert "ABCD-EFGH" in stream.getvalue()
        assert app.device_scopes == [f"{GRAPH}/.default"]

    def test_cancel_during_polling_returns_none(self):
        cancel = threading.Event()
        app = FakeMsalApp()  # never completes on its own
        orchestrator, _ = make_orchestrator(app, cancel_event=cancel)

        timer = threading.Timer(0.2, cancel.set)
        timer.start()
        started = time.monotonic()
        try:
            assert orchestrator.acquire_token_by_device_code() is None
        finally:
            timer.cancel()

        assert time.monotonic() - started < 5
        assert app.flow["expires_at"] == 0

    def test_cancel_before_start_skips_polling(self):
        cancel = threading.Event()
        cancel.set()
        app = FakeMsalApp(device_result={"access_token": "never"})
        orchestrator, _ = make_orchestrator(app, cancel_event=cancel)

        assert orchestrator.acquire_token_by_device_code() is None
        time.sleep(0.05)
        assert not app.polled.is_set()

    def test_flow_start_failure(self):
        app = FakeMsalApp(flow={"error": "invalid_client", "error_description": "AADSTS700016: app not found"})
        orchestrator, _ = make_orchestrator(app)

        with pytest.raises(TokenAcquisitionError, match="AADSTS700016"):
            orchestrator.acquire_token_by_device_code()

    def test_polling_exception_is_raised_on_caller(self):
        app = FakeMsalApp()

        def explode(flow):
            raise ConnectionError("network down")

        app.acquire_token_by_device_flow = explode
        orchestrator, _ = make_orchestrator(app)

        with pytest.raises(TokenAcquisitionError, match="network down"):
            orchestrator.acquire_token_by_device_code()

    def test_expired_code_fails(self):
        app = FakeMsalApp()
        app.flow["expires_at"] = time.time() + 0.1
        orchestrator, _ = make_orchestrator(app)

        with pytest.raises(TokenAcquisitionError, match="Device code expired"):
            orchestrator.acquire_token_by_device_code()


class TestMessageWriter:
    def test_writes_until_stopped(self):
        stream = io.StringIO()
        writer = MessageWriter(stream)
        writer.write("first")
        writer.write("second")
        writer.stop()
        writer.write("ignored")

        writer.start()

        assert stream.getvalue() == "first\nsecond\n"

    def test_returns_on_cancel(self):
        cancel = threading.Event()
        cancel.set()
        writer = MessageWriter(io.StringIO(), cancel)
        writer.start()


def test_require_password_credentials_accepts_both():
    require_password_credentials("admin@contoso.com", "pw")
