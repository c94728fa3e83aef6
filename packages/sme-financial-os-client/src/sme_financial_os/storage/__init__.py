"""Credential storage: session token and active organization persistence."""

from __future__ import annotations

from sme_financial_os.storage.base import ORGANIZATION_ID_KEY, SESSION_TOKEN_KEY, CredentialStore
from sme_financial_os.storage.db import DatabaseManager
from sme_financial_os.storage.memory import InMemoryCredentialStore
from sme_financial_os.storage.sqlite import SQLiteCredentialStore

__all__ = [
    "ORGANIZATION_ID_KEY",
    "SESSION_TOKEN_KEY",
    "CredentialStore",
    "DatabaseManager",
    "InMemoryCredentialStore",
    "SQLiteCredentialStore",
]
