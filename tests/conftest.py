"""Pytest shared fixtures for registration tests."""
import datetime
import pathlib
import sys

# Add project root to Python path
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import msal
import pytest
import requests
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import NameOID

CERT_PASSWORD = "P@ssw0rd!"


# ─────────────────────────────────────────────────────────────────────────────
# Network Guard Rails
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture(autouse=True)
def _block_network(monkeypatch, request):
    """
    Prevent unit tests from hitting the identity endpoint or the directory service.

    Tests that exercise HTTP code patch requests.post themselves; msal is
    always replaced through the orchestrator's app_factory.
    """
    if request.node.get_closest_marker("integration"):
        return

    def _stub_post(url, *args, **kwargs):
        raise RuntimeError(f"Unexpected HTTP POST in unit test: {url}")

    def _stub_get(url, *args, **kwargs):
        raise RuntimeError(f"Unexpected HTTP GET in unit test: {url}")

    def _stub_msal_app(*args, **kwargs):
        raise RuntimeError("Unexpected msal.PublicClientApplication in unit test")

    monkeypatch.setattr(requests, "post", _stub_post)
    monkeypatch.setattr(requests, "get", _stub_get)
    monkeypatch.setattr(msal, "PublicClientApplication", _stub_msal_app)


@pytest.fixture(autouse=True)
def _clean_appreg_env(monkeypatch):
    """Keep operator environment variables out of the tests."""
    for name in [
        "APPREG_AZURE_ENVIRONMENT",
        "APPREG_CLIENT_ID",
        "APPREG_CONSENT_SCOPE",
        "APPREG_CONSENT_WAIT_SECONDS",
        "APPREG_REQUEST_TIMEOUT",
        "APPREG_CERT_STORE_ROOT",
        "APPREG_USERNAME",
        "APPREG_PASSWORD",
        "APPREG_CERTIFICATE_PASSWORD",
    ]:
        monkeypatch.delenv(name, raising=False)


# ─────────────────────────────────────────────────────────────────────────────
# Certificate material
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture(scope="session")
def rsa_private_key():
    """2048-bit RSA key shared by the certificate fixtures."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def self_signed_certificate(rsa_private_key):
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "Imported Test Cert")])
    now = datetime.datetime.now(datetime.timezone.utc).replace(microsecond=0)
    return (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(rsa_private_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + datetime.timedelta(days=365))
        .sign(rsa_private_key, hashes.SHA256())
    )


@pytest.fixture
def pfx_file(tmp_path, rsa_private_key, self_signed_certificate):
    """Password-protected PKCS#12 file holding certificate and key."""
    path = tmp_path / "imported.pfx"
    path.write_bytes(
        pkcs12.serialize_key_and_certificates(
            b"imported",
            rsa_private_key,
            self_signed_certificate,
            None,
            serialization.BestAvailableEncryption(CERT_PASSWORD.encode()),
        )
    )
    return path


@pytest.fixture
def cer_file(tmp_path, self_signed_certificate):
    """DER certificate without private key."""
    path = tmp_path / "public.cer"
    path.write_bytes(self_signed_certificate.public_bytes(serialization.Encoding.DER))
    return path


@pytest.fixture
def pem_bundle_file(tmp_path, rsa_private_key, self_signed_certificate):
    """PEM file with certificate followed by an unencrypted PKCS#8 key."""
    path = tmp_path / "bundle.pem"
    path.write_bytes(
        self_signed_certificate.public_bytes(serialization.Encoding.PEM)
        + rsa_private_key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
    )
    return path


@pytest.fixture
def encrypted_pem_bundle_file(tmp_path, rsa_private_key, self_signed_certificate):
    """PEM file with certificate followed by a PKCS#8 key encrypted with CERT_PASSWORD."""
    path = tmp_path / "encrypted.pem"
    path.write_bytes(
        self_signed_certificate.public_bytes(serialization.Encoding.PEM)
        + rsa_private_key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.BestAvailableEncryption(CERT_PASSWORD.encode()),
        )
    )
    return path


@pytest.fixture
def pem_certificate_only_file(tmp_path, self_signed_certificate):
    path = tmp_path / "certificate.pem"
    path.write_bytes(self_signed_certificate.public_bytes(serialization.Encoding.PEM))
    return path


@pytest.fixture
def expected_thumbprint(self_signed_certificate):
    return self_signed_certificate.fingerprint(hashes.SHA1()).hex().upper()


# ─────────────────────────────────────────────────────────────────────────────
# HTTP stub
# ─────────────────────────────────────────────────────────────────────────────
class StubResponse:
    def __init__(self, payload, status_code: int = 200, url: str = ""):
        self._payload = payload
        self.status_code = status_code
        self.url = url
        self.reason = "OK" if status_code < 400 else "Error"
        self.text = "" if payload is None else str(payload)

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON body")
        return self._payload


@pytest.fixture
def stub_response():
    return StubResponse


@pytest.fixture
def cert_password():
    return CERT_PASSWORD
