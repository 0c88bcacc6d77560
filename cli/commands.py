import argparse
import logging
import re
import sys
from datetime import timedelta
from pathlib import Path
from typing import List, Optional

from vault_secrets import commands
from vault_secrets.config import VaultSettings
from vault_secrets.constants import DEFAULT_ALLOWLIST_DURATION, DEFAULT_NAMESPACE, OWNER_TYPE_MSIG
from vault_secrets.exceptions import ValidationError, VaultSecretsError
from vault_secrets.gateway import HTTPGatewayClient
from vault_secrets.handler import SecretsHandler
from vault_secrets.registry import WorkflowRegistryClient

logger = logging.getLogger(__name__)

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|h|m|s)")
_DURATION_UNITS = {
    "h": 3600.0,
    "m": 60.0,
    "s": 1.0,
    "ms": 1e-3,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ns": 1e-9,
}
DURATION_HELP = "units h, m, s, ms, us, ns; e.g. 48h, 30m, 1h30m"


def parse_duration(value: str) -> timedelta:
    """Parse durations such as ``48h``, ``30m`` or ``1h30m``; a bare ``0`` is zero."""
    text = value.strip()
    if not text:
        raise ValidationError("invalid --timeout: empty duration")
    if text == "0":
        return timedelta(0)
    pos = 0
    seconds = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos != len(text):
        raise ValidationError(f"invalid --timeout: cannot parse duration {value!r} ({DURATION_HELP})")
    return timedelta(seconds=seconds)


def _duration_arg(value: str) -> timedelta:
    try:
        return parse_duration(value)
    except ValidationError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def _add_approval_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--timeout",
        type=_duration_arg,
        default=DEFAULT_ALLOWLIST_DURATION,
        help=f"How long the request stays allowlisted (default 48h, max 168h; {DURATION_HELP})",
    )
    parser.add_argument("--request-id", default=None, help="Request id from a previous multisig run")
    parser.add_argument("--unsigned", action="store_true", help="Owner is a multisig; prepare an unsigned transaction")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="vault-secrets", description="Manage secrets stored in the vault DON")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--env-file", default=None, help="Path to a .env file with VAULT_* settings")
    groups = parser.add_subparsers(dest="group", required=True)

    secrets = groups.add_parser("secrets", help="Create, update, delete and list vault secrets")
    sub = secrets.add_subparsers(dest="command", required=True)

    for name, help_text in (("create", "Create secrets from a YAML file"), ("update", "Update secrets from a YAML file")):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("path", help="Secrets YAML file")
        _add_approval_flags(p)

    p = sub.add_parser("delete", help="Delete the secrets listed in a YAML file")
    p.add_argument("path", help="Secrets YAML file")
    _add_approval_flags(p)

    p = sub.add_parser("list", help="List secret identifiers in a namespace")
    p.add_argument("--namespace", default=DEFAULT_NAMESPACE, help="Namespace to list (default main)")
    _add_approval_flags(p)

    p = sub.add_parser("execute", help="Submit a bundle after its multisig approval is finalized")
    p.add_argument("path", help="Bundle .json file written by the first run")
    p.add_argument("--unsigned", action="store_true", help="Owner is a multisig")

    p = sub.add_parser("store-encryption-key", help="Store the response encryption key derived from a passphrase")
    p.add_argument("--passphrase", required=True, help="Passphrase used to derive the AES-256 key")
    _add_approval_flags(p)

    p = sub.add_parser("decrypt-output", help="Decrypt confidential workflow output")
    p.add_argument("--passphrase", required=True, help="Passphrase used to derive the AES-256 key")
    p.add_argument("-i", "--input", required=True, help="File containing the ciphertext, or '-' for stdin")
    p.add_argument("--encoding", choices=commands.DECRYPT_ENCODINGS, default="base64", help="Ciphertext encoding")
    return parser


def load_settings(args: argparse.Namespace) -> VaultSettings:
    owner_type = OWNER_TYPE_MSIG if getattr(args, "unsigned", False) else None
    return VaultSettings.load(env_file=args.env_file, owner_type=owner_type)


def build_handler(settings: VaultSettings, bundle_dir: Optional[Path] = None) -> SecretsHandler:
    settings.require("gateway_url", "rpc_url", "registry_address", "owner_address")
    gateway = HTTPGatewayClient(settings.gateway_url, timeout=settings.gateway_timeout)
    registry = WorkflowRegistryClient(
        settings.rpc_url,
        settings.registry_address,
        private_key=settings.private_key,
    )
    return SecretsHandler(settings, gateway, registry, bundle_dir=bundle_dir)


def _bundle_dir_for(args: argparse.Namespace, settings: VaultSettings) -> Optional[Path]:
    if settings.bundle_dir is not None:
        return settings.bundle_dir
    if args.command in ("create", "update"):
        return Path(args.path).resolve().parent
    return None


def run(args: argparse.Namespace) -> int:
    if args.command == "decrypt-output":
        plaintext = commands.decrypt_output(args.passphrase, args.input, args.encoding)
        print(plaintext.decode("utf-8", errors="replace"))
        return 0

    settings = load_settings(args)
    handlers: List[SecretsHandler] = []

    def connect() -> SecretsHandler:
        handler = build_handler(settings, _bundle_dir_for(args, settings))
        handlers.append(handler)
        return handler

    try:
        if args.command == "create":
            commands.create(connect, args.path, args.timeout, args.request_id)
        elif args.command == "update":
            commands.update(connect, args.path, args.timeout, args.request_id)
        elif args.command == "delete":
            commands.delete(connect, args.path, args.timeout, args.request_id)
        elif args.command == "list":
            commands.list_secrets(connect, args.timeout, args.namespace, args.request_id)
        elif args.command == "execute":
            commands.execute(connect, args.path)
        elif args.command == "store-encryption-key":
            commands.store_encryption_key(connect, args.passphrase, args.timeout, args.request_id)
    finally:
        for handler in handlers:
            handler.close()
    return 0


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format="%(message)s")
    for noisy in ("httpx", "httpcore", "urllib3", "web3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)
    try:
        return run(args)
    except VaultSecretsError as exc:
        logger.debug("command failed", exc_info=True)
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
