"""Application registration in the directory service."""
from __future__ import annotations
import base64
import datetime
import logging
import uuid
from dataclasses import dataclass
from typing import Iterable, Optional

from ..certificates import CertificateCredential
from ..exceptions import GraphAPIError
from ..scopes import ResourceAccessGroup
from .client import GraphClient

logger = logging.getLogger(__name__)

APPLICATIONS_PATH = "/beta/applications"
SIGN_IN_AUDIENCE = "AzureADMyOrg"


@dataclass(frozen=True)
class RegisteredApp:
    app_id: str
    object_id: Optional[str] = None
    display_name: Optional[str] = None


def _graph_datetime(moment: datetime.datetime) -> str:
    return moment.astimezone(datetime.timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def native_client_redirect_uri(login_endpoint: str) -> str:
    return f"{login_endpoint.rstrip('/')}/common/oauth2/nativeclient"


def build_key_credential(certificate: CertificateCredential, key_id: Optional[str] = None) -> dict:
    """Key credential entry referencing the certificate's public part."""
    return {
        "customKeyIdentifier": certificate.thumbprint,
        "endDateTime": _graph_datetime(certificate.not_after),
        "keyId": key_id or str(uuid.uuid4()),
        "startDateTime": _graph_datetime(certificate.not_before),
        "type": "AsymmetricX509Cert",
        "usage": "Verify",
        "key": base64.b64encode(certificate.raw_data).decode("ascii"),
    }


def build_registration_payload(
    application_name: str,
    certificate: CertificateCredential,
    login_endpoint: str,
    resource_access: Iterable[ResourceAccessGroup],
) -> dict:
    """Build the application body: one key credential, one public-client redirect URI."""
    return {
        "displayName": application_name,
        "signInAudience": SIGN_IN_AUDIENCE,
        "keyCredentials": [build_key_credential(certificate)],
        "publicClient": {
            "redirectUris": [native_client_redirect_uri(login_endpoint)],
        },
        "requiredResourceAccess": [group.to_payload() for group in resource_access],
    }


class AppRegistrationClient:
    """Register applications through an authenticated GraphClient."""

    def __init__(self, client: GraphClient):
        self.client = client

    def register(self, payload: dict) -> RegisteredApp:
        """Create the application, single attempt.

        Raises:
            GraphAPIError: On HTTP error or when the response carries no appId
        """
        resp = self.client.post(APPLICATIONS_PATH, json=payload)
        try:
            body = resp.json()
        except ValueError:
            body = {}
        app_id = body.get("appId") if isinstance(body, dict) else None
        if not app_id:
            raise GraphAPIError(resp.status_code, "Response did not contain an appId", resp.url or APPLICATIONS_PATH)

        app = RegisteredApp(app_id=app_id, object_id=body.get("id"), display_name=body.get("displayName"))
        logger.info("Registered application %s (%s)", app.display_name, app.app_id)
        return app

    def register_application(
        self,
        application_name: str,
        certificate: CertificateCredential,
        login_endpoint: str,
        resource_access: Iterable[ResourceAccessGroup],
    ) -> RegisteredApp:
        payload = build_registration_payload(application_name, certificate, login_endpoint, resource_access)
        return self.register(payload)
