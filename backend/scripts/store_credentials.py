#!/usr/bin/env python
"""Store the Plaid client id and secret in the system keychain.

Values are read from a ``.env`` file (``--env-file``) or prompted for.
Once stored, ``config.Settings`` picks them up ahead of the environment.

Usage:
    python -m scripts.store_credentials
    python -m scripts.store_credentials --env-file .env
    python -m scripts.store_credentials --clear
"""

import argparse
import getpass
import sys
from pathlib import Path

from dotenv import dotenv_values

from services.credential_manager import (
    CREDENTIAL_KEYS,
    delete_credential,
    get_credential,
    set_credential,
)

STORED = "stored"
UNCHANGED = "unchanged"
MISSING = "missing"
FAILED = "failed"
REMOVED = "removed"


def store_credentials(values: dict[str, str | None]) -> dict[str, str]:
    """Store each credential found in ``values``.

    Returns:
        Mapping of credential key to one of ``stored``, ``unchanged``,
        ``missing`` or ``failed``.
    """
    statuses: dict[str, str] = {}
    for key in sorted(CREDENTIAL_KEYS):
        value = (values.get(key) or "").strip()
        if not value:
            statuses[key] = MISSING
        elif get_credential(key) == value:
            statuses[key] = UNCHANGED
        else:
            statuses[key] = STORED if set_credential(key, value) else FAILED
    return statuses


def clear_credentials() -> dict[str, str]:
    """Remove every stored credential from the keychain."""
    return {key: REMOVED if delete_credential(key) else MISSING for key in sorted(CREDENTIAL_KEYS)}


def _prompt() -> dict[str, str]:
    return {key: getpass.getpass(f"{key}: ") for key in sorted(CREDENTIAL_KEYS)}


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Store Plaid credentials in the system keychain")
    parser.add_argument("--env-file", type=Path, help="Read credentials from this .env file")
    parser.add_argument("--clear", action="store_true", help="Remove stored credentials instead")
    args = parser.parse_args(argv)

    if args.clear:
        values = None
    elif args.env_file:
        if not args.env_file.exists():
            print(f"No .env file found at {args.env_file}")
            sys.exit(1)
        values = dotenv_values(args.env_file)
    else:
        values = _prompt()

    statuses = clear_credentials() if values is None else store_credentials(values)
    for key, status in statuses.items():
        print(f"  {key:<16} {status}")
    sys.exit(1 if FAILED in statuses.values() else 0)


if __name__ == "__main__":
    main()
