"""Typed exception hierarchy for sync errors.

Provides structured exceptions for differentiated error handling:
an Item that needs re-authentication is terminal until the user relinks
it, transient upstream failures are left for the next run to retry, and
persistence failures abort the page being applied.
"""


class ProviderError(Exception):
    """Base exception for all upstream-related errors.

    Carries the provider name so callers can identify which provider failed.
    """

    retriable = False

    def __init__(self, message: str, provider_name: str = "", error_code: str = ""):
        self.provider_name = provider_name
        self.error_code = error_code
        super().__init__(message)


class ReauthRequiredError(ProviderError):
    """The Item's credentials are expired, revoked or need user action.

    Terminal for the Item: it is flagged ``requires_reauth`` and skipped by
    automatic runs until an external re-authentication clears the flag.
    """

    pass


class TransientUpstreamError(ProviderError):
    """Network failures, rate limits and 5xx responses.

    Retriable on a later run; the sync engine never retries internally.
    """

    retriable = True

    def __init__(
        self,
        message: str,
        provider_name: str = "",
        error_code: str = "",
        status_code: int | None = None,
    ):
        self.status_code = status_code
        super().__init__(message, provider_name, error_code)


class ProductNotSupportedError(ProviderError):
    """The institution does not offer the requested product (e.g. investments)."""

    pass


class ProviderDataError(ProviderError):
    """Malformed or unparseable response from the provider.

    Worth retrying on a later run: upstream may have been mid-deploy.
    """

    retriable = True


class PersistenceError(Exception):
    """A write to the local mirror failed; the page and its cursor were rolled back."""

    retriable = True


class ItemNotFoundError(LookupError):
    """No Item with the requested id exists in the mirror."""

    pass


class SyncInProgressError(RuntimeError):
    """Another sync run holds the process-wide sync lock."""

    pass
