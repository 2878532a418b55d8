"""Certificate credential provisioning.

A registration is protected by exactly one certificate, obtained either by
importing an existing file or by generating a self-signed certificate.

Architecture:
    CertificateProvisioner ──> import_certificate()   (PKCS#12, PEM, DER)
                           └─> CertificateGenerator   (RsaCertificateGenerator)
                           └─> export_certificate()   ({name}.pfx / {name}.cer)
                           └─> CertificateStore        (personal "My" store)
"""
from __future__ import annotations
import datetime
import logging
import os
import re
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Union

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import NameOID

from .exceptions import (
    CertificateNotFoundError,
    CryptographicFailureError,
    IncorrectPasswordError,
    InputValidationError,
    NoPrivateKeyError,
    PasswordRequiredError,
)
from .validators import validate_export_name

logger = logging.getLogger(__name__)

DEFAULT_VALID_YEARS = 10
MIN_VALID_YEARS = 1
MAX_VALID_YEARS = 30
KEY_SIZE = 2048

PasswordType = Optional[Union[str, bytes]]

_PEM_BLOCK_RE = re.compile(rb"-----BEGIN ([A-Z0-9 ]+)-----.+?-----END \1-----", re.DOTALL)
_PKCS12_VERSION = b"\x02\x01\x03"
_PKCS7_DATA_OID = b"\x06\x09\x2a\x86\x48\x86\xf7\x0d\x01\x07\x01"


@dataclass(frozen=True)
class CertificateCredential:
    """An X.509 certificate and, when available, its private key."""
    certificate: x509.Certificate
    private_key: Optional[rsa.RSAPrivateKey] = None

    @property
    def has_private_key(self) -> bool:
        return self.private_key is not None

    @property
    def raw_data(self) -> bytes:
        """DER encoding of the public certificate."""
        return self.certificate.public_bytes(serialization.Encoding.DER)

    @property
    def thumbprint(self) -> str:
        """SHA-1 hash of the certificate, upper-case hex."""
        return self.certificate.fingerprint(hashes.SHA1()).hex().upper()

    @property
    def not_before(self) -> datetime.datetime:
        return self.certificate.not_valid_before_utc

    @property
    def not_after(self) -> datetime.datetime:
        return self.certificate.not_valid_after_utc

    @property
    def subject(self) -> str:
        return self.certificate.subject.rfc4514_string()


@dataclass(frozen=True)
class CertificateSubject:
    """Distinguished name fields; blank fields are left out of the name."""
    common_name: str = ""
    country: str = ""
    state: str = ""
    locality: str = ""
    organization: str = ""
    organization_unit: str = ""

    def to_name(self) -> x509.Name:
        fields = [
            ("CommonName", NameOID.COMMON_NAME, self.common_name),
            ("Country", NameOID.COUNTRY_NAME, self.country),
            ("State", NameOID.STATE_OR_PROVINCE_NAME, self.state),
            ("Locality", NameOID.LOCALITY_NAME, self.locality),
            ("Organization", NameOID.ORGANIZATION_NAME, self.organization),
            ("OrganizationUnit", NameOID.ORGANIZATIONAL_UNIT_NAME, self.organization_unit),
        ]
        attributes = []
        for parameter, oid, value in fields:
            if value and value.strip():
                try:
                    attributes.append(x509.NameAttribute(oid, value.strip()))
                except ValueError as exc:
                    raise InputValidationError(f"Invalid {parameter}: {exc}", parameter=parameter) from exc
        return x509.Name(attributes)


class StoreLocation(str, Enum):
    CURRENT_USER = "CurrentUser"
    LOCAL_MACHINE = "LocalMachine"

    @classmethod
    def parse(cls, value: Union[str, "StoreLocation"]) -> "StoreLocation":
        if isinstance(value, cls):
            return value
        for member in cls:
            if member.value.lower() == str(value).strip().lower():
                return member
        raise InputValidationError(
            f"Unknown store location {value!r}. Expected one of: {', '.join(m.value for m in cls)}",
            parameter="Store",
        )


def clamp_valid_years(valid_years: Optional[int]) -> int:
    """Return valid_years, or the default when it is unset or outside [1, 30]."""
    if valid_years is None or valid_years < MIN_VALID_YEARS or valid_years > MAX_VALID_YEARS:
        return DEFAULT_VALID_YEARS
    return valid_years


def _add_years(moment: datetime.datetime, years: int) -> datetime.datetime:
    try:
        return moment.replace(year=moment.year + years)
    except ValueError:
        # Feb 29 -> Feb 28
        return moment.replace(year=moment.year + years, day=28)


def validity_window(valid_years: Optional[int], now: Optional[datetime.datetime] = None) -> tuple[datetime.datetime, datetime.datetime]:
    """Compute (start, end) in UTC for a certificate valid for valid_years."""
    start = (now or datetime.datetime.now(datetime.timezone.utc)).replace(microsecond=0)
    return start, _add_years(start, clamp_valid_years(valid_years))


def _password_bytes(password: PasswordType) -> Optional[bytes]:
    if password is None or password == "" or password == b"":
        return None
    if isinstance(password, bytes):
        return password
    return password.encode("utf-8")


# ─────────────────────────────────────────────────────────────────────────────
# Import
# ─────────────────────────────────────────────────────────────────────────────
def _wrong_password() -> IncorrectPasswordError:
    return IncorrectPasswordError(
        "Private key certificate import failed: the value of --certificate-password is not correct"
    )


def _missing_password() -> PasswordRequiredError:
    return PasswordRequiredError(
        "Private key certificate import failed: the certificate is password protected, "
        "specify the password with --certificate-password"
    )


def _pem_blocks(data: bytes) -> dict[bytes, bytes]:
    """First PEM block for each label, e.g. {b"CERTIFICATE": b"-----BEGIN ..."}."""
    blocks: dict[bytes, bytes] = {}
    for match in _PEM_BLOCK_RE.finditer(data):
        blocks.setdefault(match.group(1), match.group(0))
    return blocks


def _load_pem(data: bytes, password: Optional[bytes]) -> CertificateCredential:
    blocks = _pem_blocks(data)
    if b"CERTIFICATE" not in blocks:
        raise CryptographicFailureError("PEM file does not contain a certificate", parameter="CertificatePath")
    try:
        certificate = x509.load_pem_x509_certificate(blocks[b"CERTIFICATE"])
    except ValueError as exc:
        raise CryptographicFailureError(f"Unable to read PEM certificate: {exc}", parameter="CertificatePath") from exc

    key_block = next((block for label, block in blocks.items() if label.endswith(b"PRIVATE KEY")), None)
    if key_block is None:
        return CertificateCredential(certificate)

    try:
        private_key = serialization.load_pem_private_key(key_block, password)
    except TypeError:
        # Raised both for "encrypted but no password" and "password for a plain key"
        if password is None:
            raise _missing_password() from None
        private_key = serialization.load_pem_private_key(key_block, None)
    except ValueError:
        if password is None:
            raise _missing_password() from None
        raise _wrong_password() from None
    return CertificateCredential(certificate, private_key)


def _looks_like_pkcs12(data: bytes) -> bool:
    """PFX: SEQUENCE { INTEGER 3, ContentInfo { pkcs7-data ... } }."""
    return data[:1] == b"\x30" and _PKCS12_VERSION in data[:8] and _PKCS7_DATA_OID in data[:32]


def _load_binary(data: bytes, password: Optional[bytes]) -> CertificateCredential:
    candidates = [password] if password is not None else [None, b""]
    for candidate in candidates:
        try:
            private_key, certificate, _ = pkcs12.load_key_and_certificates(data, candidate)
        except ValueError:
            continue
        if certificate is None:
            raise CryptographicFailureError("PKCS#12 file does not contain a certificate")
        return CertificateCredential(certificate, private_key)

    try:
        return CertificateCredential(x509.load_der_x509_certificate(data))
    except ValueError:
        pass

    if not _looks_like_pkcs12(data):
        raise CryptographicFailureError(
            "File at --certificate-path is not a PKCS#12, PEM or DER certificate",
            parameter="CertificatePath",
        )
    if password is not None:
        raise _wrong_password()
    raise _missing_password()


def import_certificate(certificate_path: Union[str, Path], password: PasswordType = None) -> CertificateCredential:
    """Load a certificate file and require that it holds a private key.

    Args:
        certificate_path: PKCS#12, PEM or DER file
        password: Password protecting the file, if any

    Raises:
        CertificateNotFoundError: If no file exists at certificate_path
        IncorrectPasswordError: If password was supplied but does not open the file
        PasswordRequiredError: If the file needs a password and none was supplied
        NoPrivateKeyError: If the certificate carries no private key
    """
    path = Path(certificate_path)
    if not path.is_file():
        raise CertificateNotFoundError(f"Certificate not found at path {path} (--certificate-path)", parameter="CertificatePath")

    data = path.read_bytes()
    secret = _password_bytes(password)
    if b"-----BEGIN" in data:
        credential = _load_pem(data, secret)
    else:
        credential = _load_binary(data, secret)

    if not credential.has_private_key:
        raise NoPrivateKeyError(f"Certificate at {path} does not contain a private key")

    logger.debug("Imported certificate %s from %s", credential.thumbprint, path)
    return credential


# ─────────────────────────────────────────────────────────────────────────────
# Generation
# ─────────────────────────────────────────────────────────────────────────────
class CertificateGenerator(ABC):
    """Produces self-signed certificates carrying an exportable private key."""

    @abstractmethod
    def generate(
        self,
        subject: CertificateSubject,
        not_before: datetime.datetime,
        not_after: datetime.datetime,
    ) -> CertificateCredential:
        raise NotImplementedError


class RsaCertificateGenerator(CertificateGenerator):
    def __init__(self, key_size: int = KEY_SIZE):
        self.key_size = key_size

    def generate(
        self,
        subject: CertificateSubject,
        not_before: datetime.datetime,
        not_after: datetime.datetime,
    ) -> CertificateCredential:
        private_key = rsa.generate_private_key(public_exponent=65537, key_size=self.key_size)
        name = subject.to_name()
        certificate = (
            x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(private_key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(not_before)
            .not_valid_after(not_after)
            .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
            .add_extension(
                x509.KeyUsage(
                    digital_signature=True,
                    content_commitment=False,
                    key_encipherment=True,
                    data_encipherment=True,
                    key_agreement=False,
                    key_cert_sign=False,
                    crl_sign=False,
                    encipher_only=False,
                    decipher_only=False,
                ),
                critical=False,
            )
            .add_extension(x509.SubjectKeyIdentifier.from_public_key(private_key.public_key()), critical=False)
            .sign(private_key, hashes.SHA256())
        )
        return CertificateCredential(certificate, private_key)


# ─────────────────────────────────────────────────────────────────────────────
# Export and store
# ─────────────────────────────────────────────────────────────────────────────
def pfx_bytes(credential: CertificateCredential, friendly_name: str, password: PasswordType = None) -> bytes:
    """Serialize certificate and private key as PKCS#12."""
    secret = _password_bytes(password)
    encryption = (
        serialization.BestAvailableEncryption(secret)
        if secret
        else serialization.NoEncryption()
    )
    return pkcs12.serialize_key_and_certificates(
        friendly_name.encode("utf-8"),
        credential.private_key,
        credential.certificate,
        None,
        encryption,
    )


def require_export_password(password: PasswordType) -> bytes:
    secret = _password_bytes(password)
    if secret is None:
        raise InputValidationError(
            "--certificate-password is required with --out-path; the exported .pfx holds the private key",
            parameter="CertificatePassword",
        )
    return secret


def export_certificate(
    credential: CertificateCredential,
    application_name: str,
    out_dir: Union[str, Path],
    password: PasswordType,
) -> dict[str, str]:
    """Write {application_name}.pfx (password protected) and {application_name}.cer into out_dir.

    Returns:
        Mapping of record field name to written path; empty when out_dir does not exist

    Raises:
        InputValidationError: If no password is given or the name is not a valid file name
    """
    validate_export_name(application_name)
    secret = require_export_password(password)

    directory = Path(out_dir)
    if not directory.is_absolute():
        directory = Path.cwd() / directory
    if not directory.is_dir():
        print(f"[cert] Output directory {directory} does not exist, skipping export", file=sys.stderr)
        return {}

    pfx_path = directory / f"{application_name}.pfx"
    pfx_path.write_bytes(pfx_bytes(credential, application_name, secret))
    os.chmod(pfx_path, 0o600)
    cer_path = directory / f"{application_name}.cer"
    cer_path.write_bytes(credential.raw_data)
    logger.info("Exported certificate %s to %s", credential.thumbprint, directory)
    return {"Pfx file": str(pfx_path), "Cer file": str(cer_path)}


class CertificateStore:
    """File-backed personal certificate store.

    Certificates are kept as ``{root}/{location}/{name}/{thumbprint}.pfx``.

    Usage:
        with CertificateStore(StoreLocation.CURRENT_USER, root) as store:
            store.add(credential)
    """

    def __init__(self, location: StoreLocation, root: Union[str, Path], name: str = "My"):
        self.location = location
        self.name = name
        self.path = Path(root) / location.value.lower() / name.lower()
        self._is_open = False

    @property
    def is_open(self) -> bool:
        return self._is_open

    def open(self) -> None:
        self.path.mkdir(parents=True, exist_ok=True)
        self.path.chmod(0o700)
        self._is_open = True

    def add(self, credential: CertificateCredential) -> Path:
        if not self._is_open:
            raise RuntimeError("Certificate store is not open")
        target = self.path / f"{credential.thumbprint}.pfx"
        target.write_bytes(pfx_bytes(credential, credential.thumbprint))
        os.chmod(target, 0o600)
        return target

    def close(self) -> None:
        self._is_open = False

    def __enter__(self) -> "CertificateStore":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


# ─────────────────────────────────────────────────────────────────────────────
# Provisioner
# ─────────────────────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class CertificateRequest:
    """Caller choices for obtaining the certificate.

    Import mode is selected by certificate_path; all subject fields and
    valid_years apply to generate mode only.
    """
    application_name: str
    certificate_path: Optional[str] = None
    password: Optional[str] = None
    common_name: Optional[str] = None
    country: str = ""
    state: str = ""
    locality: str = ""
    organization: str = ""
    organization_unit: str = ""
    valid_years: Optional[int] = DEFAULT_VALID_YEARS
    out_path: Optional[str] = None
    store: Optional[StoreLocation] = None


class CertificateProvisioner:
    def __init__(
        self,
        generator: Optional[CertificateGenerator] = None,
        store_root: Optional[Union[str, Path]] = None,
    ):
        self.generator = generator or RsaCertificateGenerator()
        self.store_root = Path(store_root) if store_root else Path.home() / ".appreg" / "x509stores"

    def generate(self, request: CertificateRequest) -> CertificateCredential:
        common_name = request.common_name if request.common_name is not None else request.application_name
        subject = CertificateSubject(
            common_name=common_name,
            country=request.country,
            state=request.state,
            locality=request.locality,
            organization=request.organization,
            organization_unit=request.organization_unit,
        )
        not_before, not_after = validity_window(request.valid_years)
        credential = self.generator.generate(subject, not_before, not_after)
        logger.info("Generated certificate %s valid until %s", credential.thumbprint, not_after.isoformat())
        return credential

    def install(self, credential: CertificateCredential, location: StoreLocation) -> Path:
        """Add the certificate to the personal store at location."""
        with CertificateStore(location, self.store_root) as store:
            target = store.add(credential)
        print("[cert] Certificate added to store", file=sys.stderr)
        return target

    @staticmethod
    def wants_export(request: CertificateRequest) -> bool:
        return bool(request.out_path and request.out_path.strip())

    def resolve(self, request: CertificateRequest) -> CertificateCredential:
        """Import or generate the certificate without touching the filesystem or store.

        Export prerequisites are checked first so a bad request fails
        before a key is generated.
        """
        if self.wants_export(request):
            validate_export_name(request.application_name)
            require_export_password(request.password)

        if request.certificate_path:
            return import_certificate(request.certificate_path, request.password)
        return self.generate(request)

    def persist(self, credential: CertificateCredential, request: CertificateRequest) -> dict[str, str]:
        """Apply the requested export and store side effects.

        Returns:
            Record fields describing exported files
        """
        artifacts: dict[str, str] = {}
        if self.wants_export(request):
            artifacts = export_certificate(credential, request.application_name, request.out_path, request.password)
        if request.store is not None:
            self.install(credential, request.store)
        return artifacts
