# weblog/partition.py
"""
Dynamic partitioning of records by a key column, Hive style.

Partition keys are discovered from the data. The first record with a new
key opens a handle on the sink; later records with the same key append to
it in input order. The key column itself is moved out of the rows and into
the partition name (``status=404/000000_0``).
"""
import csv
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol
from urllib.parse import unquote

import duckdb
import polars as pl

from weblog.errors import ParseError, StorageError
from weblog.models import FIELDS, Record

logger = logging.getLogger(__name__)

PART_FILE = "000000_0"
SUCCESS_MARKER = "_SUCCESS"
FORMATS = ("csv", "parquet")


@dataclass
class SkippedRecord:
    item: object
    reason: str


@dataclass
class PartitionReport:
    """Rows written per partition key (first-seen order) and skipped inputs."""

    partitions: dict = field(default_factory=dict)
    skipped: list[SkippedRecord] = field(default_factory=list)

    @property
    def written(self) -> int:
        return sum(self.partitions.values())


class PartitionHandle(Protocol):
    def write(self, row: tuple[str, ...]) -> None: ...

    def close(self) -> None: ...


class PartitionSink(Protocol):
    def open(self, key) -> PartitionHandle: ...

    def commit(self) -> None: ...

    def abort(self) -> None: ...


class _ListHandle:
    def __init__(self, rows):
        self.rows = rows

    def write(self, row):
        self.rows.append(row)

    def close(self):
        pass


class MemorySink:
    """Keeps every partition's rows in a dict. Nothing is visible until commit."""

    def __init__(self):
        self.partitions = {}
        self._pending = {}

    def open(self, key):
        rows = self._pending.setdefault(key, [])
        return _ListHandle(rows)

    def commit(self):
        self.partitions.update(self._pending)
        self._pending = {}

    def abort(self):
        self._pending = {}


class _CsvHandle:
    def __init__(self, path: Path):
        self.path = path
        self._fh = path.open("w", encoding="utf-8", newline="")
        self._writer = csv.writer(self._fh, lineterminator="\n")

    def write(self, row):
        self._writer.writerow(row)

    def close(self):
        if not self._fh.closed:
            self._fh.close()


class _ParquetHandle:
    def __init__(self, path: Path, columns):
        self.path = path
        self.columns = columns
        self._rows = []
        self._closed = False

    def write(self, row):
        self._rows.append(row)

    def close(self):
        if self._closed:
            return
        self._closed = True
        schema = {name: pl.Utf8 for name in self.columns}
        pl.DataFrame(self._rows, schema=schema, orient="row").write_parquet(self.path)


_UNSAFE = set('"#%\'*/:=?\\{[]^\x7f') | {chr(c) for c in range(1, 32)}


def escape_partition_value(value) -> str:
    """Percent-encode the characters Hive escapes in partition directory names."""
    return "".join(f"%{ord(ch):02X}" if ch in _UNSAFE else ch for ch in str(value))


def unescape_partition_value(text: str) -> str:
    return unquote(text)


class DirectorySink:
    """Writes each partition to ``root/<column>=<key>/000000_0``.

    Files are written under a temporary name. On commit every file is closed
    first, then all are renamed into place and ``_SUCCESS`` is written last;
    a failure at any step removes whatever this commit had published.
    """

    def __init__(self, root, column: str = "status", fmt: str = "csv"):
        if fmt not in FORMATS:
            raise ValueError(f"unsupported partition format {fmt!r}")
        self.root = Path(root)
        self.column = column
        self.fmt = fmt
        self.columns = tuple(name for name in FIELDS if name != column)
        self._handles = {}

    def partition_path(self, key) -> Path:
        name = PART_FILE + (".parquet" if self.fmt == "parquet" else "")
        return self.root / f"{self.column}={escape_partition_value(key)}" / name

    def open(self, key):
        final = self.partition_path(key)
        tmp = final.with_name(f".{final.name}.inprogress")
        try:
            final.parent.mkdir(parents=True, exist_ok=True)
            if self.fmt == "csv":
                handle = _CsvHandle(tmp)
            else:
                handle = _ParquetHandle(tmp, self.columns)
        except OSError as exc:
            raise StorageError("open partition", final.parent, exc.strerror or exc) from exc
        self._handles[key] = (handle, final)
        return handle

    def commit(self):
        marker = self.root / SUCCESS_MARKER
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            marker.unlink(missing_ok=True)
        except OSError as exc:
            self.abort()
            raise StorageError("commit partitions", self.root, exc.strerror or exc) from exc

        for handle, final in self._handles.values():
            try:
                handle.close()
            except (OSError, pl.exceptions.PolarsError) as exc:
                self.abort()
                raise StorageError("write partition", final, exc) from exc

        published = []
        try:
            for key, (handle, final) in self._handles.items():
                os.replace(handle.path, final)
                published.append(final)
                logger.debug("published partition %s=%s -> %s", self.column, key, final)
            marker.touch()
        except OSError as exc:
            for path in published:
                path.unlink(missing_ok=True)
            self.abort()
            raise StorageError("publish partitions", self.root, exc.strerror or exc) from exc
        self._handles = {}

    def abort(self):
        for handle, final in self._handles.values():
            try:
                if isinstance(handle, _CsvHandle):
                    handle.close()
            finally:
                handle.path.unlink(missing_ok=True)
        self._handles = {}


def write_partitioned(records, sink, column: str = "status", key_fn=None) -> PartitionReport:
    """Split ``records`` by partition key and write each group to ``sink``.

    ``key_fn`` defaults to reading ``column`` from the record. A record whose
    key cannot be evaluated, and any parse error in the stream, is reported
    in ``PartitionReport.skipped``.
    """
    if key_fn is None:
        def key_fn(record):
            return getattr(record, column)

    report = PartitionReport()
    handles = {}
    exclude = (column,)
    try:
        for item in records:
            if isinstance(item, ParseError):
                report.skipped.append(SkippedRecord(item, str(item)))
                continue
            try:
                key = key_fn(item)
            except (AttributeError, KeyError, TypeError, ValueError) as exc:
                report.skipped.append(SkippedRecord(item, f"partition key: {exc}"))
                continue
            if key is None:
                report.skipped.append(SkippedRecord(item, "partition key is missing"))
                continue

            handle = handles.get(key)
            if handle is None:
                logger.debug("new partition %s=%s", column, key)
                handle = handles[key] = sink.open(key)
                report.partitions[key] = 0
            handle.write(item.row(exclude=exclude))
            report.partitions[key] += 1
    except BaseException:
        sink.abort()
        raise

    sink.commit()
    logger.info(
        "wrote %d rows into %d partitions (%d skipped)",
        report.written,
        len(report.partitions),
        len(report.skipped),
    )
    return report


def _sql_path(path) -> str:
    return str(path).replace("'", "''")


def _part_query(path: Path, fmt: str, columns) -> str:
    select = ", ".join(
        f'CAST("{name}" AS BIGINT)'
        if name == "status"
        else f"COALESCE(CAST(\"{name}\" AS VARCHAR), '')"
        for name in columns
    )
    if fmt == "csv":
        spec = ", ".join(f"'{name}': 'VARCHAR'" for name in columns)
        source = (
            f"read_csv('{_sql_path(path)}', columns={{{spec}}}, "
            f"header=false, delim=',', quote='\"')"
        )
    else:
        source = f"read_parquet('{_sql_path(path)}')"
    return f"SELECT {select} FROM {source}"


def read_partitioned(root, column: str = "status", fmt: str = "csv"):
    """Read a committed partitioned directory back into Records.

    The key column is restored from each (unescaped) directory name. A
    directory without ``_SUCCESS`` is incomplete and raises StorageError.
    """
    if column not in FIELDS:
        raise ValueError(f"unknown record field {column!r}")
    if fmt not in FORMATS:
        raise ValueError(f"unsupported partition format {fmt!r}")
    root = Path(root)
    if not root.is_dir():
        raise StorageError("read partitions", root, "not a directory")
    if not (root / SUCCESS_MARKER).exists():
        raise StorageError("read partitions", root, f"no {SUCCESS_MARKER} marker")

    row_columns = [name for name in FIELDS if name != column]
    part_name = PART_FILE + (".parquet" if fmt == "parquet" else "")
    records = []
    con = duckdb.connect()
    try:
        for part_dir in sorted(root.glob(f"{column}=*")):
            path = part_dir / part_name
            if not path.is_file():
                continue
            key = unescape_partition_value(part_dir.name.split("=", 1)[1])
            if column == "status":
                key = int(key)
            try:
                rows = con.execute(_part_query(path, fmt, row_columns)).fetchall()
            except duckdb.Error as exc:
                raise StorageError("read partition", path, exc) from exc
            for row in rows:
                values = dict(zip(row_columns, row), **{column: key})
                records.append(Record(**values))
    finally:
        con.close()
    return records
