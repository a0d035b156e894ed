"""
Administrative CLI for connector credentials.

Credentials are issued, listed and revoked out-of-band: this script works on
the revocation list file directly and is never exposed over HTTP. Whoever can
run it (and read the server's secret) controls access to the connector.

Usage examples:

    # Credential for one user's balance, any guild
    python -m scripts.manage_credentials issue --subject 123456789012345678 \\
        --operation getBalance

    # Credential restricted to one guild, several operations
    python -m scripts.manage_credentials issue --subject 123456789012345678 \\
        --tenant 987654321098765432 --operation getGuildXp setGuildXp

    # Show every outstanding credential
    python -m scripts.manage_credentials list

    # Revoke everything
    python -m scripts.manage_credentials revoke-all

The secret and the revocation list location come from the same settings as
the server (CONNECTOR_CREDENTIAL_SECRET, CONNECTOR_KEYS_FILE) and can be
overridden with --secret and --keys-file.

The issued credential can be used with curl:

    curl "http://localhost:8080/getbalance?userId=123456789012345678" \\
      -H "Authorization: Bearer <credential>"
"""

import argparse
import asyncio
import sys
from pathlib import Path

from economy_connector.config import settings
from economy_connector.credentials import CredentialCipher, CredentialIssuer
from economy_connector.errors import ConnectorError
from economy_connector.logging_config import configure_logging
from economy_connector.revocation import RevocationStore


async def issue(args: argparse.Namespace) -> int:
    store = RevocationStore(args.keys_file)
    issuer = CredentialIssuer(CredentialCipher(args.secret, settings.credential_salt), store)
    credential = await issuer.issue(args.subject, args.tenant, args.operation)

    print(f"Subject:     {args.subject}")
    print(f"Guild:       {args.tenant or 'any'}")
    print(f"Operations:  {', '.join(sorted(set(args.operation)))}")
    print()
    print(f"Credential: {credential}")
    return 0


async def list_credentials(args: argparse.Namespace) -> int:
    keys = await RevocationStore(args.keys_file).list_all()
    for key in keys:
        print(key)
    print(f"{len(keys)} outstanding credential(s)", file=sys.stderr)
    return 0


async def revoke_all(args: argparse.Namespace) -> int:
    store = RevocationStore(args.keys_file)
    count = len(await store.list_all())
    await store.clear_all()
    print(f"Revoked {count} credential(s).")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Issue, list and revoke connector credentials.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  Balance access for one user:
    %(prog)s issue --subject 42 --operation getBalance

  Guild-restricted XP access:
    %(prog)s issue --subject 42 --tenant 7 --operation getGuildXp setGuildXp

  Revoke every credential:
    %(prog)s revoke-all
        """,
    )
    parser.add_argument(
        "--keys-file",
        type=Path,
        default=settings.keys_file,
        help="Revocation list file (default: CONNECTOR_KEYS_FILE or keys.json)",
    )
    parser.add_argument(
        "--secret",
        default=settings.credential_secret,
        help="Credential secret (must match the server's CONNECTOR_CREDENTIAL_SECRET)",
    )
    parser.add_argument("--log-level", default="warning", help="Log level (default: warning)")

    commands = parser.add_subparsers(dest="command", required=True)

    issue_parser = commands.add_parser("issue", help="Issue a new credential")
    issue_parser.add_argument(
        "--subject",
        required=True,
        help="Who the credential is for (e.g. a Discord user ID)",
    )
    issue_parser.add_argument(
        "--tenant",
        default=None,
        help="Restrict the credential to this guild ID (default: any guild)",
    )
    issue_parser.add_argument(
        "--operation",
        nargs="+",
        required=True,
        help="Space-separated operations the credential may call (e.g. getBalance getGuildXp)",
    )
    issue_parser.set_defaults(handler=issue)

    list_parser = commands.add_parser("list", help="List outstanding credentials")
    list_parser.set_defaults(handler=list_credentials)

    revoke_parser = commands.add_parser("revoke-all", help="Revoke every credential")
    revoke_parser.set_defaults(handler=revoke_all)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    try:
        return asyncio.run(args.handler(args))
    except ConnectorError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
