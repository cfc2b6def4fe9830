"""
Database Module
===============

Async relational store for credentials and their lifecycle records.

Clients:
- PostgreSQL (asyncpg + SQLAlchemy) in deployment
- SQLite (aiosqlite + SQLAlchemy) in tests

Usage:
    from credvault.database import DatabaseClient, CredentialModel

    db = DatabaseClient.from_settings(settings.database)
    await db.create_all()

    async with db.session() as session:
        result = await session.execute(select(CredentialModel))
        ...
"""

from credvault.database.engine import Base, DatabaseClient
from credvault.database.tables import (
    CredentialModel,
    CredentialRevocationModel,
    CredentialShareModel,
    CredentialTypeModel,
    CredentialVerificationModel,
    IssuanceRequestModel,
    as_utc,
)

__all__ = [
    "Base",
    "DatabaseClient",
    "CredentialModel",
    "CredentialRevocationModel",
    "CredentialShareModel",
    "CredentialTypeModel",
    "CredentialVerificationModel",
    "IssuanceRequestModel",
    "as_utc",
]
