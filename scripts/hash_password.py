#!/usr/bin/env python3
"""Generate ADMIN_PASSWORD_HASH or a fresh TOKEN_ENCRYPTION_KEY for the .env file."""

from __future__ import annotations

import argparse
import secrets
import sys

from pwdlib import PasswordHash


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument(
        "password",
        nargs="?",
        help="The plaintext admin password to hash",
    )
    group.add_argument(
        "--encryption-key",
        action="store_true",
        help="Print a random 32-byte key as 64 hex characters",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv or sys.argv[1:])
    if args.encryption_key:
        print(secrets.token_hex(32))
        return 0
    # Same hasher the login endpoint verifies against
    print(PasswordHash.recommended().hash(args.password))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
