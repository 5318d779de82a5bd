"""Unit tests for PlaidClient DataSourceClient implementation."""

import base64
import json
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest
import urllib3
from plaid import ApiException

from integrations.exceptions import (
    ProductNotSupportedError,
    ProviderDataError,
    ProviderError,
    ReauthRequiredError,
    TransientUpstreamError,
)
from integrations.plaid_client import (
    PlaidClient,
    decode_investment_cursor,
    encode_investment_cursor,
)
from models import Item


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_settings():
    """Fixture that mocks settings with configured Plaid credentials."""
    with patch("integrations.plaid_client.settings") as ms:
        ms.PLAID_CLIENT_ID = "test-client-id"
        ms.PLAID_SECRET = "test-secret"
        ms.PLAID_ENVIRONMENT = "sandbox"
        ms.SYNC_PAGE_SIZE = 2
        ms.INVESTMENTS_HISTORY_START = date(2024, 1, 1)
        ms.INVESTMENTS_LOOKBACK_DAYS = 30
        yield ms


@pytest.fixture
def mock_empty_settings():
    """Fixture that mocks settings with empty Plaid credentials."""
    with patch("integrations.plaid_client.settings") as ms:
        ms.PLAID_CLIENT_ID = ""
        ms.PLAID_SECRET = ""
        ms.PLAID_ENVIRONMENT = "sandbox"
        ms.SYNC_PAGE_SIZE = 500
        ms.INVESTMENTS_HISTORY_START = date(2024, 1, 1)
        ms.INVESTMENTS_LOOKBACK_DAYS = 30
        yield ms


@pytest.fixture
def mock_plaid_api():
    """Fixture that provides a mocked PlaidApi."""
    with patch("integrations.plaid_client.PlaidApi") as MockCls:
        api_instance = MagicMock()
        MockCls.return_value = api_instance
        yield api_instance


@pytest.fixture
def plaid_item():
    return Item(item_id="item_1", access_token="access-sandbox-1", institution_name="Chase")


def _api_exception(status: int, body: str) -> ApiException:
    exc = ApiException(status=status, reason="error")
    exc.body = body
    return exc


@pytest.fixture
def sample_sync_response():
    """Sample transactions_sync response from Plaid."""
    return {
        "accounts": [
            {
                "account_id": "acc_checking",
                "name": "Plaid Checking",
                "official_name": "Plaid Gold Standard 0% Interest Checking",
                "mask": "0000",
                "type": "depository",
                "subtype": "checking",
                "balances": {
                    "current": 110.0,
                    "available": 100.0,
                    "limit": None,
                    "iso_currency_code": "USD",
                },
            },
        ],
        "added": [
            {
                "transaction_id": "txn_1",
                "account_id": "acc_checking",
                "amount": 6.33,
                "iso_currency_code": "USD",
                "date": date(2025, 2, 3),
                "authorized_date": "2025-02-02",
                "name": "Uber 072515 SF**POOL**",
                "merchant_name": "Uber",
                "pending": False,
                "payment_channel": "online",
                "personal_finance_category": {
                    "primary": "TRANSPORTATION",
                    "detailed": "TRANSPORTATION_TAXIS_AND_RIDE_SHARES",
                },
                "logo_url": "https://plaid-merchant-logos.plaid.com/uber_1060.png",
            },
        ],
        "modified": [
            {
                "transaction_id": "txn_0",
                "account_id": "acc_checking",
                "amount": -500,
                "iso_currency_code": "usd",
                "date": "2025-02-01",
                "name": "United Airlines",
                "pending": True,
            },
        ],
        "removed": [{"transaction_id": "txn_old"}],
        "next_cursor": "cursor-abc",
        "has_more": True,
    }


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class TestConfiguration:
    def test_is_configured_with_credentials(self, mock_settings):
        assert PlaidClient().is_configured() is True

    def test_is_not_configured_without_credentials(self, mock_empty_settings):
        assert PlaidClient().is_configured() is False

    def test_unconfigured_client_refuses_calls(self, mock_empty_settings, plaid_item):
        with patch("integrations.plaid_client.PlaidApi") as MockCls:
            with pytest.raises(ProviderError, match="not configured"):
                PlaidClient().fetch_transaction_changes(plaid_item, None)
        MockCls.assert_not_called()

    def test_provider_name(self, mock_settings):
        assert PlaidClient().provider_name == "Plaid"

    def test_api_is_created_once(self, mock_settings):
        with patch("integrations.plaid_client.PlaidApi") as MockCls:
            client = PlaidClient()
            client._get_api()
            client._get_api()
        MockCls.assert_called_once()


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


class TestFetchTransactionChanges:
    def test_maps_page(self, mock_settings, mock_plaid_api, plaid_item, sample_sync_response):
        mock_plaid_api.transactions_sync.return_value = sample_sync_response

        page = PlaidClient().fetch_transaction_changes(plaid_item, None)

        assert page.next_cursor == "cursor-abc"
        assert page.has_more is True
        assert page.removed == ["txn_old"]

        [added] = page.added
        assert added.external_id == "txn_1"
        assert added.amount == Decimal("6.33")
        assert added.date == date(2025, 2, 3)
        assert added.authorized_date == date(2025, 2, 2)
        assert added.category == "TRANSPORTATION"
        assert added.subcategory == "TRANSPORTATION_TAXIS_AND_RIDE_SHARES"
        assert added.payment_channel == "online"
        assert added.currency == "USD"

        [modified] = page.modified
        assert modified.amount == Decimal("-500")
        assert modified.pending is True
        assert modified.currency == "USD"

        [account] = page.accounts
        assert account.id == "acc_checking"
        assert account.current_balance == Decimal("110.0")
        assert account.credit_limit is None

    def test_first_page_omits_cursor(self, mock_settings, mock_plaid_api, plaid_item, sample_sync_response):
        mock_plaid_api.transactions_sync.return_value = sample_sync_response

        PlaidClient().fetch_transaction_changes(plaid_item, None)

        request = mock_plaid_api.transactions_sync.call_args[0][0]
        assert request.access_token == "access-sandbox-1"
        assert request.count == 2
        assert getattr(request, "cursor", None) is None

    def test_passes_cursor(self, mock_settings, mock_plaid_api, plaid_item, sample_sync_response):
        mock_plaid_api.transactions_sync.return_value = sample_sync_response

        PlaidClient().fetch_transaction_changes(plaid_item, "cursor-prev")

        request = mock_plaid_api.transactions_sync.call_args[0][0]
        assert request.cursor == "cursor-prev"

    def test_malformed_response_is_data_error(self, mock_settings, mock_plaid_api, plaid_item):
        mock_plaid_api.transactions_sync.return_value = {
            "added": [{"account_id": "acc_checking", "amount": 1, "date": "2025-01-01"}],
            "next_cursor": "c",
            "has_more": False,
        }

        with pytest.raises(ProviderDataError):
            PlaidClient().fetch_transaction_changes(plaid_item, None)

    def test_api_error_is_classified(self, mock_settings, mock_plaid_api, plaid_item):
        mock_plaid_api.transactions_sync.side_effect = _api_exception(
            400, '{"error_code": "ITEM_LOGIN_REQUIRED", "error_message": "login needed"}'
        )

        with pytest.raises(ReauthRequiredError) as exc_info:
            PlaidClient().fetch_transaction_changes(plaid_item, None)

        assert exc_info.value.error_code == "ITEM_LOGIN_REQUIRED"
        assert "Chase" in str(exc_info.value)

    def test_network_error_is_transient(self, mock_settings, mock_plaid_api, plaid_item):
        mock_plaid_api.transactions_sync.side_effect = urllib3.exceptions.ProtocolError("connection reset")

        with pytest.raises(TransientUpstreamError):
            PlaidClient().fetch_transaction_changes(plaid_item, None)


# ---------------------------------------------------------------------------
# Investments
# ---------------------------------------------------------------------------


def _investments_response(transactions, total):
    return {
        "accounts": [{"account_id": "acc_brokerage", "name": "Brokerage", "balances": {}}],
        "securities": [
            {"security_id": "sec_vti", "ticker_symbol": "VTI", "name": "Vanguard Total", "type": "etf", "iso_currency_code": "USD",
             "isin": "US9229087690", "cusip": "922908769"},
        ],
        "investment_transactions": transactions,
        "total_investment_transactions": total,
    }


def _inv_txn(txn_id, txn_type="buy"):
    return {
        "investment_transaction_id": txn_id,
        "account_id": "acc_brokerage",
        "security_id": "sec_vti",
        "date": "2025-01-10",
        "type": txn_type,
        "subtype": txn_type,
        "amount": 500.0,
        "price": 250.0,
        "quantity": 2,
        "fees": 0,
        "iso_currency_code": "USD",
        "name": "BUY VTI",
    }


class TestFetchInvestmentChanges:
    def test_first_page_starts_at_history_start(self, mock_settings, mock_plaid_api, plaid_item):
        mock_plaid_api.investments_transactions_get.return_value = _investments_response(
            [_inv_txn("inv_1"), _inv_txn("inv_2")], total=3
        )

        page = PlaidClient().fetch_investment_changes(plaid_item, None)

        request = mock_plaid_api.investments_transactions_get.call_args[0][0]
        assert request.start_date == date(2024, 1, 1)
        assert request.options.offset == 0
        assert request.options.count == 2
        assert page.has_more is True
        assert [t.external_id for t in page.added] == ["inv_1", "inv_2"]
        assert page.added[0].quantity == Decimal("2")
        assert page.securities[0].ticker == "VTI"
        assert page.securities[0].isin == "US9229087690"
        assert page.securities[0].is_cash_equivalent is False
        assert page.removed == []

        state = decode_investment_cursor(page.next_cursor)
        assert state["offset"] == 2
        assert state["start"] == "2024-01-01"

    def test_continues_from_cursor_offset(self, mock_settings, mock_plaid_api, plaid_item):
        cursor = encode_investment_cursor({"start": "2024-01-01", "end": "2025-02-01", "offset": 2})
        mock_plaid_api.investments_transactions_get.return_value = _investments_response(
            [_inv_txn("inv_3")], total=3
        )

        page = PlaidClient().fetch_investment_changes(plaid_item, cursor)

        request = mock_plaid_api.investments_transactions_get.call_args[0][0]
        assert request.options.offset == 2
        assert request.end_date == date(2025, 2, 1)
        assert page.has_more is False
        assert decode_investment_cursor(page.next_cursor) == {"v": 1, "synced_through": "2025-02-01"}

    def test_completed_window_rereads_lookback(self, mock_settings, mock_plaid_api, plaid_item):
        synced_through = datetime.now(timezone.utc).date() - timedelta(days=2)
        cursor = encode_investment_cursor({"synced_through": synced_through.isoformat()})
        mock_plaid_api.investments_transactions_get.return_value = _investments_response([], total=0)

        page = PlaidClient().fetch_investment_changes(plaid_item, cursor)

        request = mock_plaid_api.investments_transactions_get.call_args[0][0]
        assert request.start_date == synced_through - timedelta(days=30)
        assert request.options.offset == 0
        assert page.has_more is False

    def test_lookback_never_precedes_history_start(self, mock_settings, mock_plaid_api, plaid_item):
        cursor = encode_investment_cursor({"synced_through": "2024-01-10"})
        mock_plaid_api.investments_transactions_get.return_value = _investments_response([], total=0)

        PlaidClient().fetch_investment_changes(plaid_item, cursor)

        request = mock_plaid_api.investments_transactions_get.call_args[0][0]
        assert request.start_date == date(2024, 1, 1)

    def test_unreadable_cursor_restarts_full_history(self, mock_settings, mock_plaid_api, plaid_item):
        mock_plaid_api.investments_transactions_get.return_value = _investments_response([], total=0)

        PlaidClient().fetch_investment_changes(plaid_item, "not-a-cursor!!")

        request = mock_plaid_api.investments_transactions_get.call_args[0][0]
        assert request.start_date == date(2024, 1, 1)

    def test_no_investment_accounts(self, mock_settings, mock_plaid_api, plaid_item):
        mock_plaid_api.investments_transactions_get.side_effect = _api_exception(
            400, '{"error_code": "NO_INVESTMENT_ACCOUNTS", "error_message": "none"}'
        )

        with pytest.raises(ProductNotSupportedError):
            PlaidClient().fetch_investment_changes(plaid_item, None)


class TestInvestmentCursor:
    def test_decode_none(self):
        assert decode_investment_cursor(None) is None

    def test_cursor_is_opaque_text(self):
        cursor = encode_investment_cursor({"start": "2024-01-01", "end": "2025-01-01", "offset": 500})

        assert "offset" not in cursor
        assert decode_investment_cursor(cursor)["offset"] == 500

    def test_unknown_version_is_ignored(self):
        v2 = base64.urlsafe_b64encode(json.dumps({"v": 2, "offset": 1}).encode()).decode()

        assert decode_investment_cursor(v2) is None


# ---------------------------------------------------------------------------
# Holdings
# ---------------------------------------------------------------------------


class TestFetchCurrentHoldings:
    def test_maps_snapshot(self, mock_settings, mock_plaid_api, plaid_item):
        mock_plaid_api.investments_holdings_get.return_value = {
            "accounts": [{"account_id": "acc_brokerage", "name": "Brokerage", "balances": {"current": 5000}}],
            "securities": [{"security_id": "sec_vti", "ticker_symbol": "VTI", "name": "Vanguard Total"}],
            "holdings": [
                {
                    "account_id": "acc_brokerage",
                    "security_id": "sec_vti",
                    "quantity": 10,
                    "institution_price": 250.5,
                    "institution_price_as_of": "2025-01-31",
                    "institution_value": 2505,
                    "cost_basis": None,
                    "iso_currency_code": "USD",
                },
                {
                    "account_id": "acc_brokerage",
                    "security_id": "sec_cash",
                    "quantity": 0,
                    "institution_price": None,
                },
            ],
        }

        snapshot = PlaidClient().fetch_current_holdings(plaid_item)

        assert len(snapshot.holdings) == 2
        vti = snapshot.holdings[0]
        assert vti.quantity == Decimal("10")
        assert vti.institution_price == Decimal("250.5")
        assert vti.institution_price_as_of == date(2025, 1, 31)
        assert vti.cost_basis is None
        assert snapshot.holdings[1].institution_price is None
        assert snapshot.accounts[0].current_balance == Decimal("5000")
        assert snapshot.as_of is not None


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------


class TestErrorMapping:
    @pytest.mark.parametrize(
        "code",
        ["ITEM_LOGIN_REQUIRED", "INVALID_ACCESS_TOKEN", "ACCESS_NOT_GRANTED", "ITEM_LOCKED"],
    )
    def test_reauth_codes(self, code):
        error = PlaidClient._map_plaid_error(_api_exception(400, f'{{"error_code": "{code}"}}'), "Fidelity")

        assert isinstance(error, ReauthRequiredError)
        assert error.retriable is False
        assert error.error_code == code
        assert str(error).startswith("Fidelity: ")

    @pytest.mark.parametrize("code", ["PRODUCTS_NOT_SUPPORTED", "NO_INVESTMENT_ACCOUNTS"])
    def test_product_not_supported_codes(self, code):
        error = PlaidClient._map_plaid_error(_api_exception(400, f'{{"error_code": "{code}"}}'))

        assert isinstance(error, ProductNotSupportedError)

    def test_rate_limit_429(self):
        error = PlaidClient._map_plaid_error(_api_exception(429, "{}"))

        assert isinstance(error, TransientUpstreamError)
        assert error.retriable is True
        assert error.status_code == 429

    def test_server_error_500(self):
        error = PlaidClient._map_plaid_error(_api_exception(500, "{}"))

        assert isinstance(error, TransientUpstreamError)

    def test_mutation_during_pagination_is_transient(self):
        error = PlaidClient._map_plaid_error(
            _api_exception(400, '{"error_code": "TRANSACTIONS_SYNC_MUTATION_DURING_PAGINATION"}')
        )

        assert isinstance(error, TransientUpstreamError)
        assert error.error_code == "TRANSACTIONS_SYNC_MUTATION_DURING_PAGINATION"

    def test_non_json_body(self):
        error = PlaidClient._map_plaid_error(_api_exception(502, "<html>Bad Gateway</html>"))

        assert isinstance(error, TransientUpstreamError)
        assert error.error_code == ""
