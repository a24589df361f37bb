"""
OData query string helpers.
"""

from typing import Iterable, List, Optional, Tuple
from urllib.parse import quote

_VALUE_SAFE = "'(),:"


def quote_literal(value: str) -> str:
    """Render a string literal, doubling embedded single quotes."""
    return "'" + str(value).replace("'", "''") + "'"


def and_filters(*parts: Optional[str]) -> Optional[str]:
    """AND together the non-empty filter expressions."""
    present = [p for p in parts if p]
    if not present:
        return None
    if len(present) == 1:
        return present[0]
    return " and ".join(f"({p})" for p in present)


def in_filter(field: str, values: Iterable[str]) -> str:
    return f"{field} in ({','.join(quote_literal(v) for v in values)})"


def encode_query(params: List[Tuple[str, str]]) -> str:
    """
    Encode query parameters for the feed.

    Spaces become %20 (not ``+``) and ``$`` in system query option names is
    kept literal.
    """
    return "&".join(
        f"{quote(name, safe='$')}={quote(str(value), safe=_VALUE_SAFE)}"
        for name, value in params
    )


def or_eq_filter(field: str, values: Iterable[str]) -> str:
    return " or ".join(f"{field} eq {quote_literal(v)}" for v in values)


def entity_path(resource: str, key: str) -> str:
    """Path segment addressing one record by key, e.g. ``Property('X123')``."""
    return quote(f"{resource}({quote_literal(key)})", safe="'()")
