"""Shared fixtures for the weblog test suite."""

import pytest

from weblog.models import Record

HEADER = "ip,timestamp,url,status,user_agent"


@pytest.fixture
def scenario_records():
    return [
        Record("1.1.1.1", "2024-02-01 10:15:00", "/home", 200, "A"),
        Record("1.1.1.1", "2024-02-01 10:15:30", "/x", 404, "A"),
        Record("1.1.1.1", "2024-02-01 10:16:00", "/y", 404, "A"),
        Record("1.1.1.1", "2024-02-01 10:16:10", "/z", 404, "A"),
        Record("1.1.1.1", "2024-02-01 10:16:20", "/w", 404, "A"),
    ]


@pytest.fixture
def sample_lines():
    return [
        HEADER,
        "10.0.0.1,2024-02-01 10:15:00,/home,200,Mozilla/5.0",
        "10.0.0.2,2024-02-01 10:15:10,/about,404,curl/8.0",
        "10.0.0.2,2024-02-01 10:15:20,/missing,404,curl/8.0",
        "10.0.0.3,2024-02-01 10:16:00,/home,500,Googlebot/2.1",
        "10.0.0.1,2024-02-01 10:16:05,/home,200",
        "10.0.0.2,2024-02-01 10:16:30,/missing,404,curl/8.0",
        "10.0.0.2,2024-02-01 10:17:00,/login,500,curl/8.0",
        "10.0.0.4,2024-02-01 10:17:15,/about,abc,Mozilla/5.0",
        "10.0.0.1,2024-02-01 10:17:45,/about,301,Mozilla/5.0",
    ]


@pytest.fixture
def log_file(tmp_path, sample_lines):
    path = tmp_path / "access_logs.csv"
    path.write_text("\n".join(sample_lines) + "\n", encoding="utf-8")
    return path
