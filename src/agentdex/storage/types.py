"""
Column types shared by the models.

Amounts are uint256/int128 on chain, so they are stored exactly:
NUMERIC on PostgreSQL, decimal text on SQLite (which has no exact numeric
storage wide enough for 256-bit integers).
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from sqlalchemy import JSON, Numeric, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.types import TypeDecorator


class ExactNumeric(TypeDecorator):
    """Arbitrary-precision decimal column. Python side is always `Decimal`."""

    impl = Numeric
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(100))
        return dialect.type_descriptor(Numeric(asdecimal=True))

    def process_bind_param(self, value: Any, dialect) -> Any:
        if value is None:
            return None
        if isinstance(value, float):
            raise TypeError("ExactNumeric refuses float values")
        d = Decimal(value)
        if dialect.name == "sqlite":
            return format(d, "f")
        return d

    def process_result_value(self, value: Any, dialect) -> Decimal | None:
        if value is None:
            return None
        return Decimal(value) if not isinstance(value, Decimal) else value


# JSON documents; None is stored as SQL NULL so COALESCE works on them.
JSONType = JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql")
