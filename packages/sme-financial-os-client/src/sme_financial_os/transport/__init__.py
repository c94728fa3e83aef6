"""Batched tRPC transport: header injection, payload transformer, cache."""

from __future__ import annotations

from sme_financial_os.transport.cache import QueryCache
from sme_financial_os.transport.cancellation import CancellationToken
from sme_financial_os.transport.client import ApiClient, create_api_client, get_base_url
from sme_financial_os.transport.headers import build_headers
from sme_financial_os.transport.transformer import PayloadTransformer, default_transformer

__all__ = [
    "ApiClient",
    "CancellationToken",
    "PayloadTransformer",
    "QueryCache",
    "build_headers",
    "create_api_client",
    "default_transformer",
    "get_base_url",
]
