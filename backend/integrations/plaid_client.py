"""Plaid API client.

This module implements the DataSourceClient protocol for Plaid via the
plaid-python SDK: cursor-paginated transaction changes, investment
transaction changes, and the current holdings snapshot for one Item.

Transactions use Plaid's native ``/transactions/sync`` cursor. Plaid has
no cursor endpoint for investment transactions, so this client pages
``/investments/transactions/get`` by offset and packs its date window and
offset into a cursor of its own. The sync engine stores that cursor
without looking inside it.
"""

import base64
import json
import logging
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation

import urllib3
from plaid import ApiException, Environment
from plaid.api.plaid_api import PlaidApi
from plaid.api_client import ApiClient
from plaid.configuration import Configuration
from plaid.model.investments_holdings_get_request import InvestmentsHoldingsGetRequest
from plaid.model.investments_transactions_get_request import InvestmentsTransactionsGetRequest
from plaid.model.investments_transactions_get_request_options import InvestmentsTransactionsGetRequestOptions
from plaid.model.transactions_sync_request import TransactionsSyncRequest
from plaid.model.transactions_sync_request_options import TransactionsSyncRequestOptions

from config import settings
from integrations.exceptions import (
    ProductNotSupportedError,
    ProviderDataError,
    ProviderError,
    ReauthRequiredError,
    TransientUpstreamError,
)
from integrations.provider_protocol import (
    ChangePage,
    Cursor,
    HoldingsSnapshot,
    UpstreamAccount,
    UpstreamHolding,
    UpstreamInvestmentTransaction,
    UpstreamSecurity,
    UpstreamTransaction,
)
from models.item import Item

logger = logging.getLogger(__name__)

# Map PLAID_ENVIRONMENT setting to SDK host URLs.
# Plaid's Development environment is deprecated; only sandbox and production
# are supported.
_ENVIRONMENT_MAP: dict[str, str] = {
    "sandbox": Environment.Sandbox,
    "production": Environment.Production,
}

# Error codes that require the user to go through Link update mode.
REAUTH_ERROR_CODES: frozenset[str] = frozenset(
    {
        "ITEM_LOGIN_REQUIRED",
        "INVALID_ACCESS_TOKEN",
        "ACCESS_NOT_GRANTED",
        "ADDITIONAL_CONSENT_REQUIRED",
        "ITEM_LOCKED",
        "ITEM_NOT_FOUND",
        "USER_SETUP_REQUIRED",
        "INVALID_CREDENTIALS",
        "INSUFFICIENT_CREDENTIALS",
    }
)

# Error codes meaning the institution simply does not offer the product.
PRODUCT_UNAVAILABLE_ERROR_CODES: frozenset[str] = frozenset(
    {
        "PRODUCTS_NOT_SUPPORTED",
        "NO_INVESTMENT_ACCOUNTS",
        "NO_INVESTMENT_AUTH_ACCOUNTS",
        "INVALID_PRODUCT",
    }
)

_TRANSIENT_ERROR_TYPES = frozenset({"RATE_LIMIT_EXCEEDED", "API_ERROR", "INSTITUTION_ERROR"})

# 4xx codes that clear up on their own; retried on the next run
_KNOWN_RETRY_CODES = frozenset(
    {
        "TRANSACTIONS_SYNC_MUTATION_DURING_PAGINATION",
        "PRODUCT_NOT_READY",
    }
)

_INVESTMENT_CURSOR_VERSION = 1


def encode_investment_cursor(state: dict) -> Cursor:
    """Pack investment pagination state into an opaque cursor string."""
    payload = json.dumps({"v": _INVESTMENT_CURSOR_VERSION, **state}, sort_keys=True)
    return base64.urlsafe_b64encode(payload.encode()).decode()


def decode_investment_cursor(cursor: Cursor | None) -> dict | None:
    """Unpack a cursor produced by :func:`encode_investment_cursor`.

    Returns ``None`` for a missing cursor. A cursor that cannot be decoded
    (e.g. written by an older format) is also treated as ``None`` so the
    stream restarts from full history, which the idempotent apply absorbs.
    """
    if not cursor:
        return None
    try:
        state = json.loads(base64.urlsafe_b64decode(cursor.encode()).decode())
    except (ValueError, UnicodeDecodeError):
        logger.warning("Unreadable investments cursor, restarting from full history")
        return None
    if not isinstance(state, dict) or state.get("v") != _INVESTMENT_CURSOR_VERSION:
        logger.warning("Unknown investments cursor version, restarting from full history")
        return None
    return state


class PlaidClient:
    """Wrapper around the Plaid API.

    Implements the DataSourceClient protocol consumed by the sync engine.
    """

    def __init__(
        self,
        client_id: str | None = None,
        secret: str | None = None,
        environment: str | None = None,
        page_size: int | None = None,
        history_start: date | None = None,
        lookback_days: int | None = None,
    ):
        self._client_id = client_id or settings.PLAID_CLIENT_ID
        self._secret = secret or settings.PLAID_SECRET
        self._environment = environment or settings.PLAID_ENVIRONMENT
        self._page_size = page_size or settings.SYNC_PAGE_SIZE
        self._history_start = history_start or settings.INVESTMENTS_HISTORY_START
        self._lookback_days = (
            lookback_days if lookback_days is not None else settings.INVESTMENTS_LOOKBACK_DAYS
        )

        # Lazily created on first use
        self._api: PlaidApi | None = None

    def _get_api(self) -> PlaidApi:
        """Return (and cache) a PlaidApi instance."""
        if self._api is None:
            if not self.is_configured():
                raise ProviderError(
                    "Plaid credentials are not configured (PLAID_CLIENT_ID, PLAID_SECRET)",
                    provider_name=self.provider_name,
                )
            env_key = self._environment.lower()
            host = _ENVIRONMENT_MAP.get(env_key)
            if host is None:
                logger.warning(
                    "Unknown PLAID_ENVIRONMENT=%r, falling back to sandbox. "
                    "Valid values: sandbox, production",
                    self._environment,
                )
                host = Environment.Sandbox
            logger.info(
                "Plaid API client: environment=%s, host=%s, client_id=<configured>",
                env_key,
                host,
            )
            configuration = Configuration(
                host=host,
                api_key={
                    "clientId": self._client_id,
                    "secret": self._secret,
                },
            )
            api_client = ApiClient(configuration)
            self._api = PlaidApi(api_client)
        return self._api

    @property
    def provider_name(self) -> str:
        return "Plaid"

    def is_configured(self) -> bool:
        """Check if Plaid credentials are configured."""
        return bool(self._client_id) and bool(self._secret)

    # ------------------------------------------------------------------
    # DataSourceClient protocol
    # ------------------------------------------------------------------

    def fetch_transaction_changes(self, item: Item, cursor: Cursor | None) -> ChangePage:
        """Fetch one page from ``/transactions/sync``.

        Plaid treats an omitted cursor as "from the beginning of history".
        """
        api = self._get_api()
        kwargs = {
            "access_token": item.access_token,
            "count": self._page_size,
            "options": TransactionsSyncRequestOptions(include_personal_finance_category=True),
        }
        if cursor:
            kwargs["cursor"] = cursor
        response = self._call(api.transactions_sync, TransactionsSyncRequest(**kwargs), item)

        try:
            page = ChangePage(
                next_cursor=response["next_cursor"],
                has_more=bool(response["has_more"]),
                added=[self._map_transaction(t) for t in response.get("added") or []],
                modified=[self._map_transaction(t) for t in response.get("modified") or []],
                removed=[
                    r.get("transaction_id")
                    for r in response.get("removed") or []
                    if r.get("transaction_id")
                ],
                accounts=[self._map_account(a) for a in response.get("accounts") or []],
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ProviderDataError(
                f"Malformed transactions/sync response for {item.display_name}: {e}",
                provider_name=self.provider_name,
            ) from e

        logger.debug(
            "Plaid transactions page for %s: %d added, %d modified, %d removed, has_more=%s",
            item.display_name, len(page.added), len(page.modified), len(page.removed), page.has_more,
        )
        return page

    def fetch_investment_changes(self, item: Item, cursor: Cursor | None) -> ChangePage:
        """Fetch one page of investment transactions.

        Without a cursor the window starts at ``INVESTMENTS_HISTORY_START``.
        After a window is exhausted the next run re-reads the last
        ``INVESTMENTS_LOOKBACK_DAYS`` so late-posting activity is picked up;
        replayed records are absorbed by the upsert.
        """
        state = decode_investment_cursor(cursor)
        today = datetime.now(timezone.utc).date()

        if state is None:
            start_date, end_date, offset = self._history_start, today, 0
        elif "synced_through" in state:
            synced_through = date.fromisoformat(state["synced_through"])
            start_date = max(
                self._history_start,
                synced_through - timedelta(days=self._lookback_days),
            )
            end_date, offset = today, 0
        else:
            start_date = date.fromisoformat(state["start"])
            end_date = date.fromisoformat(state["end"])
            offset = int(state["offset"])

        api = self._get_api()
        request = InvestmentsTransactionsGetRequest(
            access_token=item.access_token,
            start_date=start_date,
            end_date=end_date,
            options=InvestmentsTransactionsGetRequestOptions(
                count=self._page_size,
                offset=offset,
            ),
        )
        response = self._call(api.investments_transactions_get, request, item)

        try:
            transactions = response.get("investment_transactions") or []
            total = int(response.get("total_investment_transactions") or 0)
            added = [self._map_investment_transaction(t) for t in transactions]
            securities = [self._map_security(s) for s in response.get("securities") or []]
            accounts = [self._map_account(a) for a in response.get("accounts") or []]
        except (KeyError, TypeError, ValueError) as e:
            raise ProviderDataError(
                f"Malformed investments/transactions response for {item.display_name}: {e}",
                provider_name=self.provider_name,
            ) from e

        next_offset = offset + len(transactions)
        has_more = bool(transactions) and next_offset < total
        if has_more:
            next_cursor = encode_investment_cursor(
                {"start": start_date.isoformat(), "end": end_date.isoformat(), "offset": next_offset}
            )
        else:
            next_cursor = encode_investment_cursor({"synced_through": end_date.isoformat()})

        return ChangePage(
            next_cursor=next_cursor,
            has_more=has_more,
            added=added,
            accounts=accounts,
            securities=securities,
        )

    def fetch_current_holdings(self, item: Item) -> HoldingsSnapshot:
        """Fetch the full holdings snapshot from ``/investments/holdings/get``."""
        api = self._get_api()
        request = InvestmentsHoldingsGetRequest(access_token=item.access_token)
        response = self._call(api.investments_holdings_get, request, item)

        try:
            snapshot = HoldingsSnapshot(
                holdings=[self._map_holding(h) for h in response.get("holdings") or []],
                accounts=[self._map_account(a) for a in response.get("accounts") or []],
                securities=[self._map_security(s) for s in response.get("securities") or []],
                as_of=datetime.now(timezone.utc),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ProviderDataError(
                f"Malformed investments/holdings response for {item.display_name}: {e}",
                provider_name=self.provider_name,
            ) from e

        logger.debug(
            "Plaid holdings for %s: %d holdings, %d securities",
            item.display_name, len(snapshot.holdings), len(snapshot.securities),
        )
        return snapshot

    # ------------------------------------------------------------------
    # Internal: API call wrapper
    # ------------------------------------------------------------------

    def _call(self, endpoint, request, item: Item):
        """Invoke a Plaid endpoint, translating failures to typed exceptions."""
        try:
            return endpoint(request)
        except ApiException as e:
            raise self._map_plaid_error(e, item.display_name) from e
        except (urllib3.exceptions.HTTPError, OSError) as e:
            raise TransientUpstreamError(
                f"Network error talking to Plaid for {item.display_name}: {e}",
                provider_name=self.provider_name,
            ) from e

    # ------------------------------------------------------------------
    # Internal: record mapping
    # ------------------------------------------------------------------

    def _map_transaction(self, txn) -> UpstreamTransaction:
        """Map a Plaid transaction to an UpstreamTransaction.

        Plaid's sign convention (positive = money out) is kept as-is.
        """
        pfc = txn.get("personal_finance_category") or {}
        amount = self._to_decimal(txn.get("amount"))
        if amount is None:
            raise ValueError(f"transaction {txn.get('transaction_id')!r} has no amount")
        return UpstreamTransaction(
            external_id=txn["transaction_id"],
            account_id=txn["account_id"],
            amount=amount,
            date=self._to_date(txn["date"]),
            name=txn.get("name") or txn.get("merchant_name") or "",
            currency=self._currency(txn.get("iso_currency_code") or txn.get("unofficial_currency_code")),
            merchant_name=txn.get("merchant_name"),
            authorized_date=self._to_date(txn.get("authorized_date")),
            pending=bool(txn.get("pending")),
            pending_transaction_id=txn.get("pending_transaction_id"),
            payment_channel=self._enum_str(txn.get("payment_channel")),
            category=pfc.get("primary"),
            subcategory=pfc.get("detailed"),
            logo_url=txn.get("logo_url"),
        )

    def _map_investment_transaction(self, txn) -> UpstreamInvestmentTransaction:
        return UpstreamInvestmentTransaction(
            external_id=txn["investment_transaction_id"],
            account_id=txn["account_id"],
            date=self._to_date(txn["date"]),
            type=(self._enum_str(txn.get("type")) or "other").lower(),
            subtype=self._enum_str(txn.get("subtype")),
            security_id=txn.get("security_id"),
            amount=self._to_decimal(txn.get("amount")),
            price=self._to_decimal(txn.get("price")),
            quantity=self._to_decimal(txn.get("quantity")),
            fees=self._to_decimal(txn.get("fees")),
            currency=self._currency(txn.get("iso_currency_code") or txn.get("unofficial_currency_code")),
            name=txn.get("name"),
        )

    def _map_holding(self, holding) -> UpstreamHolding:
        quantity = self._to_decimal(holding.get("quantity"))
        return UpstreamHolding(
            account_id=holding["account_id"],
            security_id=holding["security_id"],
            quantity=quantity if quantity is not None else Decimal("0"),
            cost_basis=self._to_decimal(holding.get("cost_basis")),
            institution_price=self._to_decimal(holding.get("institution_price")),
            institution_price_as_of=self._to_date(holding.get("institution_price_as_of")),
            institution_value=self._to_decimal(holding.get("institution_value")),
            currency=self._currency(
                holding.get("iso_currency_code") or holding.get("unofficial_currency_code")
            ),
        )

    def _map_security(self, security) -> UpstreamSecurity:
        return UpstreamSecurity(
            id=security["security_id"],
            ticker=security.get("ticker_symbol"),
            name=security.get("name"),
            type=self._enum_str(security.get("type")),
            currency=self._currency(security.get("iso_currency_code")),
            isin=security.get("isin"),
            cusip=security.get("cusip"),
            is_cash_equivalent=bool(security.get("is_cash_equivalent")),
        )

    def _map_account(self, account) -> UpstreamAccount:
        balances = account.get("balances") or {}
        return UpstreamAccount(
            id=account["account_id"],
            name=account.get("name") or account.get("official_name") or "Account",
            type=self._enum_str(account.get("type")),
            subtype=self._enum_str(account.get("subtype")),
            official_name=account.get("official_name"),
            mask=account.get("mask"),
            currency=self._currency(balances.get("iso_currency_code")),
            current_balance=self._to_decimal(balances.get("current")),
            available_balance=self._to_decimal(balances.get("available")),
            credit_limit=self._to_decimal(balances.get("limit")),
        )

    # ------------------------------------------------------------------
    # Error mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _map_plaid_error(
        exc: ApiException,
        institution_name: str | None = None,
    ) -> ProviderError:
        """Map a Plaid ApiException to a typed ProviderError."""
        status = exc.status or 0
        message = str(exc)

        # Try to extract error_code from the body
        error_code = ""
        error_type = ""
        try:
            body = json.loads(exc.body) if exc.body else {}
            error_code = body.get("error_code", "") or ""
            error_type = body.get("error_type", "") or ""
            error_message = body.get("error_message", "")
            if error_message:
                message = f"Plaid error ({error_code}): {error_message}"
        except (ValueError, TypeError, AttributeError):
            logger.debug("Plaid error body was not JSON: %r", exc.body)

        if institution_name:
            message = f"{institution_name}: {message}"

        if error_code in REAUTH_ERROR_CODES:
            return ReauthRequiredError(message, provider_name="Plaid", error_code=error_code)
        if error_code in PRODUCT_UNAVAILABLE_ERROR_CODES:
            return ProductNotSupportedError(message, provider_name="Plaid", error_code=error_code)
        if not (status == 429 or status >= 500 or error_type in _TRANSIENT_ERROR_TYPES):
            # Invalid requests, mutation during pagination, ... are still
            # left for the next run, but flag codes we have not classified.
            if error_code not in _KNOWN_RETRY_CODES:
                logger.warning("Unclassified Plaid error %s (HTTP %s)", error_code or "<none>", status)
        return TransientUpstreamError(
            message, provider_name="Plaid", error_code=error_code, status_code=status or None,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _to_decimal(value) -> Decimal | None:
        """Convert a value to Decimal, returning None on failure."""
        if value is None:
            return None
        try:
            return Decimal(str(value))
        except (InvalidOperation, ValueError):
            return None

    @staticmethod
    def _to_date(value) -> date | None:
        if value is None or value == "":
            return None
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        return date.fromisoformat(str(value)[:10])

    @staticmethod
    def _enum_str(value) -> str | None:
        """Plaid enums arrive as SDK model objects carrying ``.value``."""
        if value is None:
            return None
        return str(getattr(value, "value", value))

    @staticmethod
    def _currency(value) -> str | None:
        return value.upper() if value else None
