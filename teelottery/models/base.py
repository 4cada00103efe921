"""Declarative base and column types shared by every lottery table."""

from sqlalchemy import BigInteger, Integer
from sqlalchemy.orm import DeclarativeBase

from teelottery.db.metadata import metadata_obj

# Use BigInteger by default, with a SQLite-safe Integer variant for autoincrement PKs.
ID_TYPE = BigInteger().with_variant(Integer, "sqlite")

# Tenant identifiers are opaque strings issued by the identity provider.
CLUB_ID_LENGTH = 64


class Base(DeclarativeBase):
    """Every table carries a ``club_id`` column (or hangs off one that does)
    so queries can always be scoped to a single tenant."""

    metadata = metadata_obj
