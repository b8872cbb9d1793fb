"""Data ingestion layer - OKX copy-trading public API."""

from copytrade_harvester.ingestor.models import (
    FetchOutcome,
    LeadTraderStats,
    LeadTradersPage,
    LeadTradersQuery,
    OkxApiError,
)
from copytrade_harvester.ingestor.okx_client import (
    OkxClient,
    OkxClientError,
    RateLimiter,
    TransportError,
)

__all__ = [
    "FetchOutcome",
    "LeadTraderStats",
    "LeadTradersPage",
    "LeadTradersQuery",
    "OkxApiError",
    "OkxClient",
    "OkxClientError",
    "RateLimiter",
    "TransportError",
]
