"""Directory service (Microsoft Graph) client library.

Architecture:
- client.py: HTTP client with bearer authentication and error translation
- applications.py: Registration payload and application creation

Usage:
    from appreg.core.graph import GraphClient, AppRegistrationClient

    client = GraphClient("https://graph.microsoft.com", credential.access_token)
    app = AppRegistrationClient(client).register_application(
        "Tool1", certificate, "https://login.microsoftonline.com", groups
    )
"""
from .client import GraphClient, REQUEST_TIMEOUT
from .applications import (
    APPLICATIONS_PATH,
    SIGN_IN_AUDIENCE,
    AppRegistrationClient,
    RegisteredApp,
    build_key_credential,
    build_registration_payload,
    native_client_redirect_uri,
)

__all__ = [
    "GraphClient",
    "REQUEST_TIMEOUT",
    "APPLICATIONS_PATH",
    "SIGN_IN_AUDIENCE",
    "AppRegistrationClient",
    "RegisteredApp",
    "build_key_credential",
    "build_registration_payload",
    "native_client_redirect_uri",
]
