from dataclasses import astuple

import pytest

from weblog import partition
from weblog.errors import StorageError
from weblog.models import Record
from weblog.parse import only_records, read_records
from weblog.partition import (
    SUCCESS_MARKER,
    DirectorySink,
    MemorySink,
    escape_partition_value,
    read_partitioned,
    write_partitioned,
)


def _sorted(records):
    return sorted(records, key=astuple)


def test_dynamic_partitions_in_memory(sample_lines):
    sink = MemorySink()
    report = write_partitioned(read_records(sample_lines), sink)
    assert list(report.partitions) == [200, 404, 500, 301]
    assert report.partitions == {200: 1, 404: 3, 500: 2, 301: 1}
    assert report.written == 7
    # the two malformed lines are reported, not dropped silently
    assert len(report.skipped) == 2
    assert sink.partitions[404] == [
        ("10.0.0.2", "2024-02-01 10:15:10", "/about", "curl/8.0"),
        ("10.0.0.2", "2024-02-01 10:15:20", "/missing", "curl/8.0"),
        ("10.0.0.2", "2024-02-01 10:16:30", "/missing", "curl/8.0"),
    ]


def test_round_trip_in_memory(sample_lines):
    records = list(only_records(read_records(sample_lines)))
    sink = MemorySink()
    write_partitioned(records, sink)
    rebuilt = [
        Record(ip, ts, url, status, ua)
        for status, rows in sink.partitions.items()
        for ip, ts, url, ua in rows
    ]
    assert _sorted(rebuilt) == _sorted(records)


def test_unevaluable_key_is_skipped(scenario_records):
    def key_fn(record):
        if record.url == "/y":
            raise ValueError("no key")
        return None if record.url == "/z" else record.status

    sink = MemorySink()
    report = write_partitioned(scenario_records, sink, key_fn=key_fn)
    assert report.written == 3
    assert [s.item.url for s in report.skipped] == ["/y", "/z"]
    assert "no key" in report.skipped[0].reason


def test_sink_aborted_on_failure(scenario_records):
    class Boom(Exception):
        pass

    def records():
        yield from scenario_records[:2]
        raise Boom()

    sink = MemorySink()
    with pytest.raises(Boom):
        write_partitioned(records(), sink)
    assert sink.partitions == {}


def test_partition_by_other_column(scenario_records):
    sink = MemorySink()
    report = write_partitioned(scenario_records, sink, column="ip")
    assert report.partitions == {"1.1.1.1": 5}
    assert sink.partitions["1.1.1.1"][0] == ("2024-02-01 10:15:00", "/home", "200", "A")


def test_directory_sink_layout(tmp_path, sample_lines):
    root = tmp_path / "status_table"
    write_partitioned(read_records(sample_lines), DirectorySink(root))
    dirs = sorted(p.name for p in root.iterdir())
    assert dirs == ["status=200", "status=301", "status=404", "status=500"]
    text = (root / "status=500" / "000000_0").read_text(encoding="utf-8")
    assert text == (
        "10.0.0.3,2024-02-01 10:16:00,/home,Googlebot/2.1\n"
        "10.0.0.2,2024-02-01 10:17:00,/login,curl/8.0\n"
    )
    assert not list(root.rglob("*.inprogress"))


def test_directory_sink_abort_leaves_nothing(tmp_path, scenario_records):
    root = tmp_path / "out"

    def records():
        yield from scenario_records
        raise RuntimeError("source went away")

    with pytest.raises(RuntimeError):
        write_partitioned(records(), DirectorySink(root))
    assert not [p for p in root.rglob("*") if p.is_file()]


def test_directory_sink_rejects_unknown_format(tmp_path):
    with pytest.raises(ValueError):
        DirectorySink(tmp_path, fmt="orc")


@pytest.mark.parametrize("fmt", ["csv", "parquet"])
def test_round_trip_through_duckdb(tmp_path, sample_lines, fmt):
    records = list(only_records(read_records(sample_lines)))
    root = tmp_path / fmt
    write_partitioned(records, DirectorySink(root, fmt=fmt))
    rebuilt = read_partitioned(root, fmt=fmt)
    assert _sorted(rebuilt) == _sorted(records)


def test_read_partitioned_missing_root(tmp_path):
    with pytest.raises(StorageError):
        read_partitioned(tmp_path / "absent")


def test_empty_write_is_committed(tmp_path):
    root = tmp_path / "empty"
    write_partitioned([], DirectorySink(root))
    assert (root / SUCCESS_MARKER).exists()
    assert read_partitioned(root) == []


def test_read_partitioned_requires_success_marker(tmp_path, scenario_records):
    root = tmp_path / "table"
    write_partitioned(scenario_records, DirectorySink(root))
    (root / SUCCESS_MARKER).unlink()
    with pytest.raises(StorageError, match=SUCCESS_MARKER):
        read_partitioned(root)


def test_failed_close_publishes_nothing(tmp_path, monkeypatch, scenario_records):
    real_close = partition._ParquetHandle.close
    calls = []

    def close_until_disk_full(self):
        calls.append(self.path)
        if len(calls) == 2:
            raise OSError(28, "No space left on device")
        real_close(self)

    monkeypatch.setattr(partition._ParquetHandle, "close", close_until_disk_full)
    root = tmp_path / "table"
    with pytest.raises(StorageError, match="write partition"):
        write_partitioned(scenario_records, DirectorySink(root, fmt="parquet"))
    assert len(calls) == 2
    assert not [p for p in root.rglob("*") if p.is_file()]


def test_failed_rename_rolls_back_published_partitions(tmp_path, monkeypatch, scenario_records):
    real_replace = partition.os.replace
    calls = []

    def replace_once(src, dst):
        calls.append(dst)
        if len(calls) == 2:
            raise OSError(5, "Input/output error")
        real_replace(src, dst)

    monkeypatch.setattr(partition.os, "replace", replace_once)
    root = tmp_path / "table"
    with pytest.raises(StorageError, match="publish partitions"):
        write_partitioned(scenario_records, DirectorySink(root))
    assert not [p for p in root.rglob("*") if p.is_file()]
    with pytest.raises(StorageError):
        read_partitioned(root)


def test_escape_partition_value():
    assert escape_partition_value("/a=b?c") == "%2Fa%3Db%3Fc"
    assert escape_partition_value(404) == "404"
    assert escape_partition_value("100%") == "100%25"


def test_partition_keys_with_path_characters_round_trip(tmp_path, scenario_records):
    records = scenario_records + [
        Record("2.2.2.2", "2024-02-01 10:17:00", "/search?q=a/b", 200, "B"),
    ]
    root = tmp_path / "by_url"
    report = write_partitioned(records, DirectorySink(root, column="url"), column="url")
    assert report.written == 6
    assert sorted(p.name for p in root.iterdir() if p.is_dir())[:2] == [
        "url=%2Fhome",
        "url=%2Fsearch%3Fq%3Da%2Fb",
    ]
    assert _sorted(read_partitioned(root, column="url")) == _sorted(records)
