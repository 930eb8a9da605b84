# weblog/ua.py
from functools import lru_cache

import polars as pl
from ua_parser import user_agent_parser

UNKNOWN_FAMILY = "Other"


@lru_cache(maxsize=4096)
def parse_ua(ua_string: str) -> str:
    """Browser family of a user agent string, e.g. "Chrome"."""
    parsed = user_agent_parser.Parse(ua_string or "")
    return parsed["user_agent"]["family"] or UNKNOWN_FAMILY


def ua_family(column: str = "user_agent") -> pl.Expr:
    """Group key for the top user agent report that folds versions together.

    ``Firefox/115`` and ``Firefox/121`` both count towards ``Firefox``.
    """
    return (
        pl.col(column)
        .map_elements(parse_ua, return_dtype=pl.Utf8, skip_nulls=False)
        .alias("agent_family")
    )
