"""Register a directory application protected by a certificate.

This module serves as a CLI wrapper around appreg.core services.
"""
from __future__ import annotations
import argparse
import json
import logging
import signal
import sys
import threading
from pathlib import Path

SCRIPT_DIR = Path(__file__).parent
PROJECT_ROOT = SCRIPT_DIR.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from appreg.config.settings import AZURE_ENVIRONMENTS, load_settings, resolve_environment
from appreg.core.authentication import AuthenticationOrchestrator
from appreg.core.certificates import DEFAULT_VALID_YEARS, CertificateRequest, StoreLocation
from appreg.core.consent import ConsentFlowDriver
from appreg.core.exceptions import AppRegistrationError
from appreg.core.registration_service import RegistrationRequest, RegistrationService
from appreg.core.scopes import SCOPE_IDENTIFIERS
from appreg.core.tokens import decode_token
from appreg.core.validators import validate_tenant

EXIT_CANCELLED = 130

_GENERATION_OPTIONS = ("common_name", "country", "state", "locality", "organization", "organization_unit")


def emit_record(record: dict) -> None:
    """Write the result record to stdout as JSON."""
    print(json.dumps(record, indent=2), flush=True)


def install_interrupt_handler(cancel_event: threading.Event) -> None:
    """Turn Ctrl+C into a cancellation request instead of a KeyboardInterrupt."""
    def _handler(signum, frame):
        print("\n[register] Cancellation requested", file=sys.stderr)
        cancel_event.set()

    signal.signal(signal.SIGINT, _handler)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Entra ID application registration helper")
    parser.add_argument("--tenant", default="", help="Tenant domain or id, e.g. contoso.onmicrosoft.com")
    parser.add_argument("--azure-environment", default=None, choices=list(AZURE_ENVIRONMENTS),
                        help="Cloud to register in (default: APPREG_AZURE_ENVIRONMENT or Production)")
    parser.add_argument("--device-login", action="store_true", help="Sign in with a device code")
    parser.add_argument("--username", default=None, help="Operator username (env: APPREG_USERNAME)")
    parser.add_argument("--password", default=None, help="Operator password (env: APPREG_PASSWORD)")
    parser.add_argument("--verbose", action="store_true")

    sub = parser.add_subparsers(dest="cmd")

    reg = sub.add_parser("register", help="Register a new application")
    reg.add_argument("--application-name", required=True)
    reg.add_argument("--certificate-path", default=None,
                     help="Existing PFX/PEM certificate with private key; omit to generate one")
    reg.add_argument("--certificate-password", default=None,
                     help="Password for the certificate (env: APPREG_CERTIFICATE_PASSWORD)")
    reg.add_argument("--common-name", default=None, help="Defaults to the application name")
    reg.add_argument("--country", default="")
    reg.add_argument("--state", default="")
    reg.add_argument("--locality", default="")
    reg.add_argument("--organization", default="")
    reg.add_argument("--organization-unit", default="")
    reg.add_argument("--valid-years", type=int, default=DEFAULT_VALID_YEARS,
                     help="Between 1 and 30; other values fall back to 10")
    reg.add_argument("--out-path", default=None, help="Directory for {name}.pfx and {name}.cer; requires --certificate-password")
    reg.add_argument("--store", default=None, choices=[location.value for location in StoreLocation],
                     help="Add the certificate to this personal certificate store")
    reg.add_argument("--scopes", nargs="+", default=None, choices=sorted(SCOPE_IDENTIFIERS), metavar="SCOPE",
                     help="Permissions to request (default: SPO.Sites.FullControl.All, "
                          "MSGraph.Group.ReadWrite.All, SPO.User.Read.All, MSGraph.User.Read.All)")
    reg.add_argument("--no-browser", action="store_true", help="Print the consent URL instead of opening it")

    tok = sub.add_parser("token", help="Print an access token for the directory service")
    tok.add_argument("--decoded", action="store_true", help="Print the decoded token header and claims")

    return parser


def main(argv: list[str] | None = None) -> None:
    """Command-line entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.cmd:
        parser.print_help()
        return

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = load_settings()
        if args.azure_environment:
            config.azure_environment = resolve_environment(args.azure_environment)
    except RuntimeError as exc:
        parser.error(str(exc))

    username = args.username or config.username
    password = args.password if args.password is not None else config.password

    cancel_event = threading.Event()
    install_interrupt_handler(cancel_event)

    if args.cmd == "token":
        try:
            orchestrator = AuthenticationOrchestrator(
                validate_tenant(args.tenant),
                login_endpoint=config.login_endpoint,
                graph_endpoint=config.graph_endpoint,
                client_id=config.client_id,
                cancel_event=cancel_event,
            )
            credential = orchestrator.authenticate(
                device_login=args.device_login, username=username, password=password
            )
            if credential is None:
                sys.exit(EXIT_CANCELLED)
            if args.decoded:
                print(json.dumps(decode_token(credential.access_token), indent=2))
            else:
                print(credential.access_token)
        except AppRegistrationError as e:
            print(f"[token] Error: {e}", file=sys.stderr)
            sys.exit(1)
        return

    if args.certificate_path and any(getattr(args, option) for option in _GENERATION_OPTIONS):
        parser.error("--certificate-path cannot be combined with certificate generation options")

    certificate_password = (
        args.certificate_password if args.certificate_password is not None else config.certificate_password
    )
    certificate = CertificateRequest(
        application_name=args.application_name,
        certificate_path=args.certificate_path,
        password=certificate_password or None,
        common_name=args.common_name,
        country=args.country,
        state=args.state,
        locality=args.locality,
        organization=args.organization,
        organization_unit=args.organization_unit,
        valid_years=args.valid_years,
        out_path=args.out_path,
        store=StoreLocation.parse(args.store) if args.store else None,
    )
    request = RegistrationRequest(
        application_name=args.application_name,
        tenant=args.tenant,
        certificate=certificate,
        scopes=args.scopes,
        device_login=args.device_login,
        username=username,
        password=password,
    )
    consent_driver = ConsentFlowDriver(
        emit_record,
        cancel_event=cancel_event,
        wait_seconds=config.consent_wait_seconds,
        interactive=False if args.no_browser else None,
    )
    service = RegistrationService(
        config,
        emit_record,
        cancel_event=cancel_event,
        consent_driver=consent_driver,
    )

    try:
        record = service.register(request)
    except AppRegistrationError as e:
        print(f"[register] Error: {e}", file=sys.stderr)
        sys.exit(1)

    if record is None:
        print("[register] Cancelled, no application was registered", file=sys.stderr)
        sys.exit(EXIT_CANCELLED)


if __name__ == "__main__":
    main()
