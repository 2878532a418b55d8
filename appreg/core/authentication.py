"""Token acquisition for the operator account.

Two flows are supported:
    - Device code: polling runs on a worker thread while the calling thread
      relays the sign-in instructions through a MessageWriter.
    - Username/password: a single direct token exchange.

Both flows observe the cancellation event shared with the CLI's interrupt
handler. A cancelled flow returns None instead of raising.
"""
from __future__ import annotations
import logging
import queue
import sys
import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional, TextIO

import msal

from .exceptions import AppRegistrationError, MissingCredentialError, TokenAcquisitionError

logger = logging.getLogger(__name__)

_STOP = object()


@dataclass(frozen=True)
class Credential:
    """Bearer token for one invocation; never persisted."""
    access_token: str
    login_endpoint: str
    tenant: str

    def __repr__(self) -> str:
        return f"Credential(login_endpoint={self.login_endpoint!r}, tenant={self.tenant!r})"


class MessageWriter:
    """Relays messages written from any thread to a stream on the calling thread.

    start() blocks until stop() is called or the cancellation event is set.
    """

    def __init__(
        self,
        stream: Optional[TextIO] = None,
        cancel_event: Optional[threading.Event] = None,
        tick: float = 0.1,
    ):
        self.stream = stream or sys.stderr
        self.cancel_event = cancel_event
        self.tick = tick
        self._queue: "queue.Queue[Any]" = queue.Queue()

    def write(self, message: str) -> None:
        self._queue.put(message)

    def stop(self) -> None:
        self._queue.put(_STOP)

    def start(self) -> None:
        while True:
            if self.cancel_event is not None and self.cancel_event.is_set():
                return
            try:
                message = self._queue.get(timeout=self.tick)
            except queue.Empty:
                continue
            if message is _STOP:
                return
            print(message, file=self.stream, flush=True)


def require_password_credentials(username: Optional[str], password: Optional[str]) -> None:
    """Raise MissingCredentialError unless both username and password are present."""
    if not username or not username.strip():
        raise MissingCredentialError("--username is required unless --device-login is given", parameter="Username")
    if password is None or len(password) == 0:
        raise MissingCredentialError("--password is required unless --device-login is given", parameter="Password")


def _default_app_factory(client_id: str, authority: str) -> msal.PublicClientApplication:
    return msal.PublicClientApplication(client_id, authority=authority)


def _error_detail(result: dict) -> str:
    return result.get("error_description") or result.get("error") or "unknown error"


class AuthenticationOrchestrator:
    """Acquire a directory-service token for the operator.

    Usage:
        orchestrator = AuthenticationOrchestrator(
            "contoso.onmicrosoft.com",
            login_endpoint="https://login.microsoftonline.com",
            graph_endpoint="https://graph.microsoft.com",
            client_id=config.client_id,
            cancel_event=cancel,
        )
        credential = orchestrator.acquire_token_by_device_code()
    """

    def __init__(
        self,
        tenant: str,
        *,
        login_endpoint: str,
        graph_endpoint: str,
        client_id: str,
        cancel_event: Optional[threading.Event] = None,
        app_factory: Callable[[str, str], Any] = _default_app_factory,
        message_stream: Optional[TextIO] = None,
    ):
        self.tenant = tenant
        self.login_endpoint = login_endpoint.rstrip("/")
        self.graph_endpoint = graph_endpoint.rstrip("/")
        self.client_id = client_id
        self.cancel_event = cancel_event or threading.Event()
        self.app_factory = app_factory
        self.message_stream = message_stream
        self._flow: Optional[dict] = None

    @property
    def authority(self) -> str:
        return f"{self.login_endpoint}/{self.tenant}"

    @property
    def scopes(self) -> list[str]:
        return [f"{self.graph_endpoint}/.default"]

    def authenticate(
        self,
        *,
        device_login: bool,
        username: Optional[str] = None,
        password: Optional[str] = None,
    ) -> Optional[Credential]:
        if device_login:
            return self.acquire_token_by_device_code()
        return self.acquire_token_by_password(username, password)

    def acquire_token_by_password(self, username: Optional[str], password: Optional[str]) -> Credential:
        """Exchange username and password for a token, once.

        Raises:
            MissingCredentialError: If username or password is empty
            TokenAcquisitionError: If the token endpoint rejects the exchange
        """
        require_password_credentials(username, password)

        app = self.app_factory(self.client_id, self.authority)
        logger.debug("Requesting token for %s from %s", username, self.authority)
        try:
            result = app.acquire_token_by_username_password(username.strip(), password, scopes=self.scopes)
        except ValueError as exc:
            raise TokenAcquisitionError(f"Token request failed: {exc}") from exc
        return self._credential_from(result)

    def acquire_token_by_device_code(self) -> Optional[Credential]:
        """Run the device code flow until sign-in completes or the operator cancels.

        Returns:
            Credential, or None when cancelled
        """
        app = self.app_factory(self.client_id, self.authority)
        writer = MessageWriter(self.message_stream, self.cancel_event)
        outcome: dict[str, Any] = {}
        worker = threading.Thread(
            target=self._poll_device_code,
            args=(app, writer, outcome),
            name="device-code-poll",
            daemon=True,
        )
        worker.start()
        writer.start()

        if self.cancel_event.is_set():
            self._abort_flow()
            worker.join(timeout=self._polling_interval())
            print("[auth] Device login cancelled", file=sys.stderr)
            return None

        worker.join()
        error = outcome.get("error")
        if isinstance(error, AppRegistrationError):
            raise error
        if error is not None:
            raise TokenAcquisitionError(f"Device code flow failed: {error}") from error
        if self.cancel_event.is_set():
            return None
        return self._credential_from(outcome.get("result") or {})

    def _poll_device_code(self, app: Any, writer: MessageWriter, outcome: dict[str, Any]) -> None:
        try:
            flow = app.initiate_device_flow(scopes=self.scopes)
            if "user_code" not in flow:
                outcome["error"] = TokenAcquisitionError(
                    f"Failed to start device login: {_error_detail(flow)}"
                )
                return
            self._flow = flow
            if self.cancel_event.is_set():
                self._abort_flow()
                return
            writer.write(flow.get("message") or f"Enter code {flow['user_code']} at {flow.get('verification_uri')}")
            outcome["result"] = app.acquire_token_by_device_flow(flow)
        except Exception as exc:
            # Re-raised on the calling thread
            outcome["error"] = exc
        finally:
            writer.stop()

    def _abort_flow(self) -> None:
        # msal stops polling once expires_at is in the past
        if self._flow is not None:
            self._flow["expires_at"] = 0

    def _polling_interval(self) -> float:
        if self._flow is not None:
            return float(self._flow.get("interval", 5)) + 1.0
        return 5.0

    def _credential_from(self, result: dict) -> Credential:
        token = result.get("access_token")
        if not token:
            raise TokenAcquisitionError(f"Authentication failed: {_error_detail(result)}")
        logger.info("Token acquired for tenant %s", self.tenant)
        return Credential(access_token=token, login_endpoint=self.login_endpoint, tenant=self.tenant)
