"""Standard column definitions for consistency."""
from sqlalchemy import BigInteger, Column, ForeignKey, Integer, String
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

# BIGSERIAL on Postgres; SQLite only autoincrements INTEGER PRIMARY KEY.
BigIntId = BigInteger().with_variant(Integer, "sqlite")


def bigint_pk():
    return Column(BigIntId, primary_key=True, autoincrement=True)


def bigint_fk(table: str, nullable: bool = False, ondelete: str = "CASCADE"):
    return Column(
        BigIntId,
        ForeignKey(f"{table}.id", ondelete=ondelete),
        nullable=nullable,
        index=True,
    )


def tenant_fk():
    return Column(
        String(255),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )


def timestamp_created():
    return Column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )