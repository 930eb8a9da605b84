# weblog/agg.py
import logging

import polars as pl

from weblog.config import AnalysisConfig
from weblog.errors import ConfigError, StorageError
from weblog.models import (
    FIELDS,
    Report,
    StatusHistogram,
    SuspiciousIPs,
    TimeTrend,
    TopN,
    TotalCount,
)
from weblog.parse import SCHEMA, only_records

logger = logging.getLogger(__name__)

URL = "url"
USER_AGENT = "user_agent"


def load_logs_lazy(parquet_path: str):
    """Return a Polars LazyFrame over logs parquet(s).

    The schema is resolved up front so a missing or unreadable file fails
    here with a StorageError rather than later inside a collect.
    """
    try:
        lf = pl.scan_parquet(parquet_path)
        schema = lf.collect_schema()
    except (OSError, pl.exceptions.PolarsError) as exc:
        raise StorageError("read parquet", parquet_path, exc) from exc
    missing = [name for name in FIELDS if name not in schema]
    if missing:
        raise StorageError(
            "read parquet", parquet_path, f"missing column(s): {', '.join(missing)}"
        )
    return lf


def frame_from_records(items, stats=None) -> pl.LazyFrame:
    """Materialise a record stream into a LazyFrame in a single traversal.

    Parse errors in the stream are skipped (and counted into ``stats``).
    """
    columns = {name: [] for name in FIELDS}
    for record in only_records(items, stats):
        columns["ip"].append(record.ip)
        columns["timestamp"].append(record.timestamp)
        columns["url"].append(record.url)
        columns["status"].append(record.status)
        columns["user_agent"].append(record.user_agent)
    return pl.DataFrame(columns, schema=SCHEMA).lazy()


def _as_lazy(data, stats=None) -> pl.LazyFrame:
    if isinstance(data, pl.LazyFrame):
        return data
    if isinstance(data, pl.DataFrame):
        return data.lazy()
    return frame_from_records(data, stats)


# Query plans. Each returns a LazyFrame so analyze() can collect them together.


def _total_plan(df: pl.LazyFrame):
    return df.select(pl.len().alias("hits"))


def _status_plan(df: pl.LazyFrame):
    return (
        df.group_by("status")
        .agg(pl.len().alias("hits"))
        .sort(["hits", "status"], descending=[True, False])
    )


def _top_plan(df: pl.LazyFrame, key, n: int):
    expr = pl.col(key) if isinstance(key, str) else key
    return (
        df.group_by(expr.alias("key"), maintain_order=True)
        .agg(pl.len().alias("hits"))
        .sort("hits", descending=True, maintain_order=True)
        .head(n)
    )


def _suspicious_plan(df: pl.LazyFrame, statuses, threshold: int):
    return (
        df.filter(pl.col("status").is_in(statuses))
        .group_by("ip")
        .agg(pl.len().alias("hits"))
        .filter(pl.col("hits") > threshold)
        .sort(["hits", "ip"], descending=[True, False])
    )


def _trend_plan(df: pl.LazyFrame, precision: int):
    return (
        df.group_by(pl.col("timestamp").str.slice(0, precision).alias("bucket"))
        .agg(pl.len().alias("hits"))
        .sort("bucket")
    )


def _check_precision(precision):
    if not isinstance(precision, int) or isinstance(precision, bool) or precision < 1:
        raise ConfigError(f"bucket precision must be a positive integer, got {precision!r}")


def _check_threshold(threshold):
    if not isinstance(threshold, int) or isinstance(threshold, bool) or threshold < 0:
        raise ConfigError(f"threshold must be a non-negative integer, got {threshold!r}")


def total_count(data) -> int:
    return _total_plan(_as_lazy(data)).collect().item()


def status_histogram(data) -> dict[int, int]:
    """Requests per status, ordered by count desc then status asc."""
    df = _status_plan(_as_lazy(data)).collect()
    return dict(df.rows())


def top_n(data, key, n: int):
    """The ``n`` most frequent values of ``key``; ties keep first-seen order."""
    if n <= 0:
        return []
    return _top_plan(_as_lazy(data), key, n).collect().rows()


def suspicious_ips(data, statuses=(404, 500), threshold: int = 3):
    _check_threshold(threshold)
    statuses = list(statuses)
    if not statuses:
        return []
    return _suspicious_plan(_as_lazy(data), statuses, threshold).collect().rows()


def time_trend(data, precision: int = 16):
    _check_precision(precision)
    return _trend_plan(_as_lazy(data), precision).collect().rows()


def merge_counts(*partials) -> dict:
    """Sum ``(key, count)`` partial results by key, keeping first-seen key order."""
    merged = {}
    for partial in partials:
        items = partial.items() if isinstance(partial, dict) else partial
        for key, count in items:
            merged[key] = merged.get(key, 0) + count
    return merged


def analyze(data, config: AnalysisConfig | None = None, stats=None, agent_key=USER_AGENT):
    """Run all six analyses over ``data`` with one traversal of the input."""
    config = config or AnalysisConfig()
    df = _as_lazy(data, stats)
    plans = {
        "total": _total_plan(df),
        "status": _status_plan(df),
        "trend": _trend_plan(df, config.bucket_precision),
    }
    if config.top_n > 0:
        plans["urls"] = _top_plan(df, URL, config.top_n)
        plans["agents"] = _top_plan(df, agent_key, config.top_n)
    if config.suspicious_statuses:
        plans["suspicious"] = _suspicious_plan(
            df, list(config.suspicious_statuses), config.threshold
        )

    frames = dict(zip(plans, pl.collect_all(list(plans.values()))))
    logger.debug("collected %d result frames", len(frames))

    def rows(name):
        return frames[name].rows() if name in frames else []

    return Report(
        total_requests=TotalCount(frames["total"].item()),
        status_codes=StatusHistogram(dict(frames["status"].rows())),
        most_visited=TopN(rows("urls")),
        top_user_agents=TopN(rows("agents")),
        suspicious_ips=SuspiciousIPs(rows("suspicious")),
        time_trend=TimeTrend(rows("trend")),
    )
