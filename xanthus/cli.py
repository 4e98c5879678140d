"""
Xanthus CLI: credential and SSH key operations.

Usage:
    xanthus setup                              # Verify token, ensure the KV namespace
    xanthus secret get config:hetzner:api_key  # Decrypt and print a secret
    xanthus secret set <key> <value>           # Encrypt and store a secret
    xanthus secret list                        # List stored keys
    xanthus provider configure hetzner <key>   # Validate, then store a provider key
    xanthus ssh-key [--public]                 # Get or create the platform SSH key
    xanthus logout                             # Remove the local SSH key cache
    xanthus version                            # Show version

The Cloudflare token comes from --token or $CLOUDFLARE_API_TOKEN; the account
from --account, $CLOUDFLARE_ACCOUNT_ID, or the token's first membership.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="xanthus",
        description="Xanthus: encrypted credential and SSH key storage on Cloudflare KV.",
    )
    parser.add_argument("--version", action="store_true", help="Show version and exit")
    parser.add_argument("--token", help="Cloudflare API token (default: $CLOUDFLARE_API_TOKEN)")
    parser.add_argument("--account", help="Cloudflare account ID (default: $CLOUDFLARE_ACCOUNT_ID)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log at INFO level")

    subparsers = parser.add_subparsers(dest="command")

    # setup
    subparsers.add_parser("setup", help="Verify token and create the KV namespace if missing")

    # secret
    secret_parser = subparsers.add_parser("secret", help="Read and write encrypted secrets")
    secret_sub = secret_parser.add_subparsers(dest="secret_command")
    get_parser = secret_sub.add_parser("get", help="Decrypt and print a secret")
    get_parser.add_argument("key", help="Logical key, e.g. config:hetzner:api_key")
    set_parser = secret_sub.add_parser("set", help="Encrypt and store a secret")
    set_parser.add_argument("key", help="Logical key")
    set_parser.add_argument("value", help="Plaintext value, or - to read stdin")
    delete_parser = secret_sub.add_parser("delete", help="Delete a secret")
    delete_parser.add_argument("key", help="Logical key")
    list_parser = secret_sub.add_parser("list", help="List stored keys")
    list_parser.add_argument("--prefix", default="config:", help="Key prefix (default: config:)")

    # provider
    provider_parser = subparsers.add_parser("provider", help="Manage cloud provider credentials")
    provider_sub = provider_parser.add_subparsers(dest="provider_command")
    configure_parser = provider_sub.add_parser("configure", help="Validate and store a provider key")
    configure_parser.add_argument("provider", choices=["hetzner", "oci"], help="Provider name")
    configure_parser.add_argument("credential", help="API key or auth token, or - to read stdin")

    # ssh-key
    ssh_parser = subparsers.add_parser("ssh-key", help="Get or create the platform SSH key")
    ssh_parser.add_argument("--public", action="store_true", help="Print the public key")

    # logout
    subparsers.add_parser("logout", help="Remove the local SSH key cache")

    # version
    subparsers.add_parser("version", help="Show version")

    args = parser.parse_args(argv)

    if args.version or args.command == "version":
        from xanthus import __version__

        print(f"xanthus {__version__}")
        return 0

    _configure_logging(args.verbose)

    if args.command == "setup":
        return _run(_cmd_setup, args)
    elif args.command == "secret" and args.secret_command:
        return _run(_cmd_secret, args)
    elif args.command == "provider" and args.provider_command:
        return _run(_cmd_provider, args)
    elif args.command == "ssh-key":
        return _run(_cmd_ssh_key, args)
    elif args.command == "logout":
        return _run(_cmd_logout, args)
    else:
        parser.print_help()
        return 0


def _configure_logging(verbose: bool) -> None:
    from xanthus.config import get_config

    level = "INFO" if verbose else get_config().log_level
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def _run(command, args: argparse.Namespace) -> int:
    from xanthus.vault import VaultError, build_service, user_message

    service = build_service()
    try:
        return command(service, args)
    except VaultError as e:
        logging.getLogger(__name__).debug("Command failed: %s", e)
        print(f"Error: {user_message(e)}")
        return 1
    finally:
        service.close()


def _token(args: argparse.Namespace) -> str:
    token = args.token or os.environ.get("CLOUDFLARE_API_TOKEN", "")
    if not token:
        from xanthus.vault import VaultError

        raise VaultError("Missing Cloudflare token; pass --token or set CLOUDFLARE_API_TOKEN")
    return token


def _account(service, args: argparse.Namespace, token: str) -> str:
    return args.account or os.environ.get("CLOUDFLARE_ACCOUNT_ID") or service.store.fetch_account_id(token)


def _read_value(value: str) -> str:
    return sys.stdin.read().strip() if value == "-" else value


def _cmd_setup(service, args: argparse.Namespace) -> int:
    result = service.setup(_token(args))
    print(f"Account:   {result.account_id}")
    print(f"Namespace: {result.namespace_id}")
    return 0


def _cmd_secret(service, args: argparse.Namespace) -> int:
    token = _token(args)
    account_id = _account(service, args, token)

    if args.secret_command == "get":
        print(service.get_secret(token, account_id, args.key))
    elif args.secret_command == "set":
        service.set_secret(token, account_id, args.key, _read_value(args.value))
        print(f"Stored {args.key}")
    elif args.secret_command == "delete":
        service.delete_secret(token, account_id, args.key)
        print(f"Deleted {args.key}")
    elif args.secret_command == "list":
        for key in service.list_secrets(token, account_id, args.prefix):
            print(key)
    return 0


def _cmd_provider(service, args: argparse.Namespace) -> int:
    token = _token(args)
    account_id = _account(service, args, token)
    service.configure_provider(token, account_id, args.provider, _read_value(args.credential))
    print(f"{args.provider} credential validated and stored")
    return 0


def _cmd_ssh_key(service, args: argparse.Namespace) -> int:
    token = _token(args)
    account_id = _account(service, args, token)
    acquisition = service.get_or_create_ssh_key(token, account_id)
    key_pair = acquisition.key_pair

    if args.public:
        print(key_pair.public_key, end="")
        return 0

    print(f"Key name:    {key_pair.key_name}")
    print(f"Fingerprint: {key_pair.fingerprint}")
    print(f"Created at:  {key_pair.created_at}")
    print(f"Source:      {acquisition.source}")
    if acquisition.source == "generated":
        print(f"KV:          {acquisition.remote}")
        print(f"Local:       {acquisition.local}")
    return 0


def _cmd_logout(service, args: argparse.Namespace) -> int:
    account_id = args.account or os.environ.get("CLOUDFLARE_ACCOUNT_ID", "")
    service.logout(account_id)
    print("Local SSH keys removed")
    return 0
