# weblog/export.py
import logging
import os
import tempfile
from pathlib import Path

from weblog.errors import StorageError
from weblog.models import TotalCount

logger = logging.getLogger(__name__)

REPORT_FILES = {
    "total_requests": "output_total_requests",
    "status_codes": "output_status_codes",
    "most_visited": "output_most_visited",
    "top_user_agents": "output_top_user_agents",
    "suspicious_ips": "output_suspicious_ips",
    "time_trend": "output_time_trend",
}


def render(result) -> str:
    """Text form of one result: a bare integer, or ``key: value`` lines."""
    if isinstance(result, TotalCount):
        return f"{result.value}\n"
    return "".join(f"{key}: {value}\n" for key, value in result.rows())


def _atomic_write(path: Path, text: str) -> None:
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as fh:
            fh.write(text)
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.remove(tmp)
        raise


def write_report(name: str, result, out_dir) -> Path:
    out_dir = Path(out_dir)
    try:
        filename = REPORT_FILES[name]
    except KeyError:
        raise ValueError(f"unknown report {name!r}") from None
    path = out_dir / filename
    try:
        out_dir.mkdir(parents=True, exist_ok=True)
        _atomic_write(path, render(result))
    except OSError as exc:
        raise StorageError(f"export {name}", path, exc.strerror or exc) from exc
    logger.debug("wrote %s", path)
    return path


def export_report(report, out_dir) -> list[Path]:
    """Write every result of ``report`` to its own file under ``out_dir``."""
    return [write_report(name, result, out_dir) for name, result in report]
