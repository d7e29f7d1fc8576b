"""
app/mappers package marker.
"""

from app.mappers.field_resolver import (
    DEFAULT_SAMPLE_SIZE,
    FieldResolver,
    ResolvedFields,
    find_column_by_terms,
    normalize_key,
    pick_best_key,
)
from app.mappers.values import parse_date, parse_number

__all__ = [
    "DEFAULT_SAMPLE_SIZE",
    "FieldResolver",
    "ResolvedFields",
    "find_column_by_terms",
    "normalize_key",
    "parse_date",
    "parse_number",
    "pick_best_key",
]
