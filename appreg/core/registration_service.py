"""
Registration Service Layer

Runs one registration end to end:

    ScopeResolver ──────────┐
    CertificateProvisioner ─┼──> AppRegistrationClient ──> ConsentFlowDriver
    AuthenticationOrchestrator ┘

Validation and certificate errors abort before any network call. Export and
store side effects run only once the operator has signed in. A failed
registration aborts before consent; exported files and store entries created
earlier in the run are left in place.
"""
from __future__ import annotations
import logging
import threading
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Optional

from appreg.config.settings import AppConfig
from appreg.core.authentication import AuthenticationOrchestrator, Credential, require_password_credentials
from appreg.core.certificates import CertificateProvisioner, CertificateRequest
from appreg.core.consent import ConsentFlowDriver, ConsentRequest
from appreg.core.exceptions import TokenAcquisitionError
from appreg.core.graph import AppRegistrationClient, GraphClient
from appreg.core.scopes import ScopeResolver
from appreg.core.validators import validate_application_name, validate_tenant

logger = logging.getLogger(__name__)

APP_ID_FIELD = "AzureAppId"
THUMBPRINT_FIELD = "Certificate Thumbprint"


@dataclass(frozen=True)
class RegistrationRequest:
    application_name: str
    tenant: str
    certificate: CertificateRequest
    scopes: Optional[list[str]] = None
    device_login: bool = False
    username: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)


class RegistrationService:
    """Orchestrates a single application registration.

    Collaborators are injectable so each step can be replaced in tests.
    """

    def __init__(
        self,
        config: AppConfig,
        emit: Callable[[dict], Any],
        *,
        cancel_event: Optional[threading.Event] = None,
        scope_resolver: Optional[ScopeResolver] = None,
        provisioner: Optional[CertificateProvisioner] = None,
        authenticator_factory: Callable[..., AuthenticationOrchestrator] = AuthenticationOrchestrator,
        graph_client_factory: Callable[..., GraphClient] = GraphClient,
        consent_driver: Optional[ConsentFlowDriver] = None,
    ):
        self.config = config
        self.emit = emit
        self.cancel_event = cancel_event or threading.Event()
        self.scope_resolver = scope_resolver or ScopeResolver()
        self.provisioner = provisioner or CertificateProvisioner(store_root=config.cert_store_root)
        self.authenticator_factory = authenticator_factory
        self.graph_client_factory = graph_client_factory
        self.consent_driver = consent_driver or ConsentFlowDriver(
            emit,
            cancel_event=self.cancel_event,
            wait_seconds=config.consent_wait_seconds,
        )

    def authenticate(self, tenant: str, *, device_login: bool, username: Optional[str], password: Optional[str]) -> Optional[Credential]:
        orchestrator = self.authenticator_factory(
            tenant,
            login_endpoint=self.config.login_endpoint,
            graph_endpoint=self.config.graph_endpoint,
            client_id=self.config.client_id,
            cancel_event=self.cancel_event,
        )
        return orchestrator.authenticate(device_login=device_login, username=username, password=password)

    def register(self, request: RegistrationRequest) -> Optional[dict]:
        """Run the registration.

        Returns:
            The emitted result record, or None if the operator cancelled
            before the application was created
        """
        application_name = validate_application_name(request.application_name)
        tenant = validate_tenant(request.tenant)
        if not request.device_login:
            require_password_credentials(request.username, request.password)

        resource_access = self.scope_resolver.resolve(request.scopes)
        certificate_request = replace(request.certificate, application_name=application_name)
        certificate = self.provisioner.resolve(certificate_request)

        credential = self.authenticate(
            tenant,
            device_login=request.device_login,
            username=request.username,
            password=request.password,
        )
        if credential is None or self.cancel_event.is_set():
            logger.info("Registration of %s cancelled before the application was created", application_name)
            return None
        if not credential.access_token:
            raise TokenAcquisitionError("Identity endpoint returned an empty access token")

        artifacts = self.provisioner.persist(certificate, certificate_request)

        graph = self.graph_client_factory(
            self.config.graph_endpoint,
            credential.access_token,
            timeout=self.config.request_timeout,
        )
        app = AppRegistrationClient(graph).register_application(
            application_name,
            certificate,
            credential.login_endpoint,
            resource_access,
        )

        record = dict(artifacts)
        record[APP_ID_FIELD] = app.app_id
        record[THUMBPRINT_FIELD] = certificate.thumbprint

        consent = ConsentRequest(
            login_endpoint=credential.login_endpoint,
            tenant=tenant,
            app_id=app.app_id,
            scope=self.config.consent_scope,
        )
        self.consent_driver.run(consent, record)
        return record
