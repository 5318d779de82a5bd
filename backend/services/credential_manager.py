"""Keychain storage for the Plaid client id and secret.

``keyring`` is imported lazily: on hosts without it (CI, containers) every
lookup misses and the settings fall through to the environment.
"""

import logging

logger = logging.getLogger(__name__)

SERVICE_NAME = "ledger-mirror"

CREDENTIAL_KEYS: frozenset[str] = frozenset({"PLAID_CLIENT_ID", "PLAID_SECRET"})


def _keyring():
    try:
        import keyring
    except ImportError:
        return None
    return keyring


def get_credential(key: str) -> str | None:
    """Return the stored value for ``key``, or ``None`` if unavailable."""
    backend = _keyring()
    if backend is None:
        return None
    try:
        return backend.get_password(SERVICE_NAME, key)
    except Exception:
        logger.debug("keyring lookup failed for %s", key, exc_info=True)
        return None


def set_credential(key: str, value: str) -> bool:
    """Store ``value`` under ``key``.

    Only keys in :data:`CREDENTIAL_KEYS` are accepted; blank values are
    refused.

    Returns:
        ``True`` if stored, ``False`` otherwise.
    """
    if key not in CREDENTIAL_KEYS:
        logger.warning("Refusing to store non-credential key %s", key)
        return False
    if not value or not value.strip():
        logger.warning("Refusing to store empty value for %s", key)
        return False

    backend = _keyring()
    if backend is None:
        logger.warning("keyring is not installed, cannot store %s", key)
        return False
    try:
        backend.set_password(SERVICE_NAME, key, value)
    except Exception:
        logger.warning("Failed to store %s in keychain", key, exc_info=True)
        return False
    logger.info("Stored %s in keychain", key)
    return True


def delete_credential(key: str) -> bool:
    """Remove ``key`` from the keychain. Returns ``False`` if nothing was removed."""
    if key not in CREDENTIAL_KEYS:
        return False
    backend = _keyring()
    if backend is None:
        return False
    try:
        backend.delete_password(SERVICE_NAME, key)
    except Exception:
        # keyring raises PasswordDeleteError when the entry is absent
        logger.debug("keyring delete failed for %s", key, exc_info=True)
        return False
    logger.info("Removed %s from keychain", key)
    return True
