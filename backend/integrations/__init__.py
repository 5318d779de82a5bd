"""External API integrations.

This package contains:
- Provider protocol: The DataSourceClient interface and normalized records
- Exceptions: Error taxonomy shared with the sync engine
- Plaid client: Integration with the Plaid API
"""

from integrations.provider_protocol import (
    ChangePage,
    DataSourceClient,
    HoldingsSnapshot,
)

__all__ = [
    "ChangePage",
    "DataSourceClient",
    "HoldingsSnapshot",
]
