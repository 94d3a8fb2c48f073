"""Column types shared by the models."""

from decimal import Decimal
from typing import Optional

from sqlalchemy import BigInteger
from sqlalchemy.types import TypeDecorator

# Ingredient quantities are kept to the thousandth of a unit (a gram per kg)
QUANTITY_PLACES = 3
_SCALE = 10 ** QUANTITY_PLACES


class Quantity(TypeDecorator):
    """Exact decimal quantity stored as a scaled integer.

    SQLite keeps NUMERIC columns as REAL, so repeated arithmetic in SQL drifts
    away from the decimal value. Storing thousandths as an integer keeps both
    the stored value and ``col - :amount`` / ``col >= :amount`` exact on
    every backend. Literals compared with the column go through the same
    scaling.
    """

    impl = BigInteger
    cache_ok = True

    @property
    def python_type(self):
        return Decimal

    def process_bind_param(self, value, dialect) -> Optional[int]:
        if value is None:
            return None
        if not isinstance(value, Decimal):
            value = Decimal(str(value))
        scaled = value * _SCALE
        if scaled != scaled.to_integral_value():
            raise ValueError(f"Quantity {value} has more than {QUANTITY_PLACES} decimal places")
        return int(scaled)

    def process_result_value(self, value, dialect) -> Optional[Decimal]:
        if value is None:
            return None
        return Decimal(int(value)).scaleb(-QUANTITY_PLACES)
