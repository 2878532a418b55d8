import base64
import re

import pytest
import requests

from appreg.core.certificates import CertificateCredential
from appreg.core.exceptions import GraphAPIError, NetworkFailureError
from appreg.core.graph import (
    AppRegistrationClient,
    GraphClient,
    build_key_credential,
    build_registration_payload,
)
from appreg.core.scopes import ScopeResolver

GRAPH = "https://graph.microsoft.com"
LOGIN = "https://login.microsoftonline.com"


@pytest.fixture
def credential(self_signed_certificate, rsa_private_key):
    return CertificateCredential(self_signed_certificate, rsa_private_key)


@pytest.fixture
def captured_post(monkeypatch, stub_response):
    """Patch requests.post; the returned dict records the last call and holds the response."""
    state = {"response": stub_response({"appId": "11111111-2222-3333-4444-555555555555", "id": "obj-1", "displayName": "Tool1"}, 201)}

    def fake_post(url, json=None, headers=None, timeout=None, **kwargs):
        state.update(url=url, json=json, headers=headers, timeout=timeout)
        response = state["response"]
        response.url = url
        return response

    monkeypatch.setattr(requests, "post", fake_post)
    return state


class TestPayload:
    def test_key_credential_references_certificate(self, credential):
        key_credential = build_key_credential(credential, key_id="kid")

        assert key_credential["customKeyIdentifier"] == credential.thumbprint
        assert key_credential["keyId"] == "kid"
        assert key_credential["type"] == "AsymmetricX509Cert"
        assert key_credential["usage"] == "Verify"
        assert base64.b64decode(key_credential["key"]) == credential.raw_data
        assert re.fullmatch(r"\d{4}-\d\d-\d\dT\d\d:\d\d:\d\dZ", key_credential["startDateTime"])

    def test_key_id_is_random_guid(self, credential):
        first = build_key_credential(credential)["keyId"]
        second = build_key_credential(credential)["keyId"]
        assert first != second
        assert re.fullmatch(r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}", first)

    def test_registration_payload(self, credential):
        groups = ScopeResolver().resolve()
        payload = build_registration_payload("Tool1", credential, LOGIN + "/", groups)

        assert payload["displayName"] == "Tool1"
        assert payload["signInAudience"] == "AzureADMyOrg"
        assert len(payload["keyCredentials"]) == 1
        assert payload["publicClient"] == {"redirectUris": [f"{LOGIN}/common/oauth2/nativeclient"]}
        assert payload["requiredResourceAccess"] == [group.to_payload() for group in groups]

    def test_china_redirect_uri(self, credential):
        payload = build_registration_payload("Tool1", credential, "https://login.chinacloudapi.cn", [])
        assert payload["publicClient"]["redirectUris"] == ["https://login.chinacloudapi.cn/common/oauth2/nativeclient"]


class TestRegister:
    def test_posts_to_applications_with_bearer_token(self, captured_post, credential):
        client = AppRegistrationClient(GraphClient(GRAPH + "/", "tok-123", timeout=12))

        app = client.register_application("Tool1", credential, LOGIN, ScopeResolver().resolve())

        assert app.app_id == "11111111-2222-3333-4444-555555555555"
        assert app.object_id == "obj-1"
        assert captured_post["url"] == f"{GRAPH}/beta/applications"
        assert captured_post["headers"]["Authorization"] == "Bearer tok-123"
        assert captured_post["headers"]["Content-Type"] == "application/json"
        assert captured_post["timeout"] == 12
        assert captured_post["json"]["displayName"] == "Tool1"

    def test_http_error_surfaces_service_message(self, captured_post, stub_response, credential):
        captured_post["response"] = stub_response(
            {"error": {"code": "Authorization_RequestDenied", "message": "Insufficient privileges to complete the operation."}},
            403,
        )
        client = AppRegistrationClient(GraphClient(GRAPH, "tok"))

        with pytest.raises(GraphAPIError) as excinfo:
            client.register_application("Tool1", credential, LOGIN, [])

        assert excinfo.value.status_code == 403
        assert "Insufficient privileges" in str(excinfo.value)
        assert "Authorization_RequestDenied" in excinfo.value.message

    def test_non_json_error_body(self, captured_post, stub_response):
        captured_post["response"] = stub_response(None, 502)
        with pytest.raises(GraphAPIError) as excinfo:
            AppRegistrationClient(GraphClient(GRAPH, "tok")).register({})
        assert excinfo.value.status_code == 502

    def test_missing_app_id(self, captured_post, stub_response):
        captured_post["response"] = stub_response({"id": "obj-1"}, 201)
        with pytest.raises(GraphAPIError, match="appId"):
            AppRegistrationClient(GraphClient(GRAPH, "tok")).register({})

    def test_connection_failure(self, monkeypatch):
        def refuse(*args, **kwargs):
            raise requests.ConnectionError("connection refused")

        monkeypatch.setattr(requests, "post", refuse)
        with pytest.raises(NetworkFailureError, match="connection refused"):
            AppRegistrationClient(GraphClient(GRAPH, "tok")).register({})

    def test_empty_token_rejected(self):
        with pytest.raises(ValueError):
            GraphClient(GRAPH, "")
