# weblog/parse.py
import gzip
import logging
import os
import re
from dataclasses import astuple, dataclass, field

import polars as pl

from weblog.errors import BadStatusError, FieldCountError, ParseError, StorageError
from weblog.models import FIELDS, Record

logger = logging.getLogger(__name__)

DELIMITER = ","
HEADER = DELIMITER.join(FIELDS)

STATUS_RE = re.compile(r"\s*[+-]?\d+\s*")
# bounds of the Int64 status column
STATUS_MIN = -(2**63)
STATUS_MAX = 2**63 - 1

SCHEMA = {
    "ip": pl.Utf8,
    "timestamp": pl.Utf8,
    "url": pl.Utf8,
    "status": pl.Int64,
    "user_agent": pl.Utf8,
}


@dataclass(slots=True)
class ParseStats:
    """Counts of accepted and rejected lines."""

    parsed: int = 0
    rejected: dict[str, int] = field(default_factory=dict)

    @property
    def failed(self) -> int:
        return sum(self.rejected.values())

    def note_success(self) -> None:
        self.parsed += 1

    def note_failure(self, reason: str) -> None:
        self.rejected[reason] = self.rejected.get(reason, 0) + 1


def parse_record(raw_line: str, line_no=None) -> Record:
    """Split one comma-delimited line into a Record.

    There is no quoting in this format, so a user agent containing a comma
    is reported as a field count error rather than mis-parsed.
    """
    line = raw_line.rstrip("\r\n")
    parts = line.split(DELIMITER)
    if len(parts) != len(FIELDS):
        raise FieldCountError(
            line_no, line, f"expected {len(FIELDS)} fields, got {len(parts)}"
        )
    ip, timestamp, url, status, user_agent = parts
    if not STATUS_RE.fullmatch(status):
        raise BadStatusError(line_no, line, f"status {status!r} is not an integer")
    code = int(status)
    if not STATUS_MIN <= code <= STATUS_MAX:
        raise BadStatusError(line_no, line, f"status {status!r} is out of range")
    return Record(ip, timestamp, url, code, user_agent)


def read_records(source, skip_header: bool = True):
    """Lazily yield a Record or a ParseError for every line of ``source``.

    ``source`` may be a binary stream, a text stream or any iterable of lines.
    """
    for line_no, line in enumerate(source, 1):
        if isinstance(line, bytes):
            line = line.decode("utf-8", errors="replace")
        if line_no == 1 and skip_header:
            continue
        if not line.strip():
            continue
        try:
            yield parse_record(line, line_no)
        except ParseError as exc:
            yield exc


def iter_lines(path):
    path = os.fspath(path)
    opener = gzip.open if path.endswith(".gz") else open
    try:
        with opener(path, "rt", encoding="utf-8", errors="replace") as fh:
            for line in fh:
                yield line
    except OSError as exc:
        raise StorageError("read", path, exc.strerror or exc) from exc


def read_file(path, skip_header: bool = True):
    return read_records(iter_lines(path), skip_header=skip_header)


def only_records(items, stats: ParseStats | None = None, source=None):
    """Drop parse errors from a mixed stream, counting and logging each one."""
    for item in items:
        if isinstance(item, ParseError):
            if stats is not None:
                stats.note_failure(item.reason)
            logger.warning("skipping %s%s", f"{source} " if source else "", item)
            continue
        if stats is not None:
            stats.note_success()
        yield item


def _write_chunk(batch, out_prefix: str, file_idx: int) -> str:
    target = f"{out_prefix}-{file_idx}.parquet"
    tmp = target + ".inprogress"
    try:
        pl.DataFrame(batch, schema=SCHEMA, orient="row").write_parquet(tmp)
        os.replace(tmp, target)
    except OSError as exc:
        if os.path.exists(tmp):
            os.remove(tmp)
        raise StorageError("write parquet", target, exc.strerror or exc) from exc
    logger.debug("wrote %d rows to %s", len(batch), target)
    return target


def parse_file_to_parquet(
    in_path: str, out_prefix: str, batch_size: int = 50_000, skip_header: bool = True
) -> ParseStats:
    """
    Parse a log file into one or more Parquet files.
    Output: out_prefix-0.parquet, out_prefix-1.parquet, ...
    """
    stats = ParseStats()
    batch = []
    file_idx = 0
    for record in only_records(read_file(in_path, skip_header), stats, in_path):
        batch.append(astuple(record))
        if len(batch) >= batch_size:
            _write_chunk(batch, out_prefix, file_idx)
            batch = []
            file_idx += 1

    if batch or file_idx == 0:
        _write_chunk(batch, out_prefix, file_idx)
    logger.info(
        "loaded %d records from %s (%d rejected)", stats.parsed, in_path, stats.failed
    )
    return stats
