# weblog/config.py
import tomllib
from dataclasses import dataclass, fields, replace
from pathlib import Path

from weblog.errors import ConfigError

# "YYYY-MM-DD HH:MM:SS"
TIMESTAMP_WIDTH = 19


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


@dataclass(frozen=True)
class AnalysisConfig:
    """Settings for one analysis run. Validated on construction."""

    top_n: int = 3
    suspicious_statuses: tuple[int, ...] = (404, 500)
    threshold: int = 3
    bucket_precision: int = 16
    skip_header: bool = True

    def __post_init__(self):
        if not _is_int(self.top_n) or self.top_n < 0:
            raise ConfigError(f"top_n must be a non-negative integer, got {self.top_n!r}")
        if not _is_int(self.threshold) or self.threshold < 0:
            raise ConfigError(
                f"threshold must be a non-negative integer, got {self.threshold!r}"
            )
        if (
            not _is_int(self.bucket_precision)
            or not 1 <= self.bucket_precision <= TIMESTAMP_WIDTH
        ):
            raise ConfigError(
                f"bucket_precision must be between 1 and {TIMESTAMP_WIDTH}, "
                f"got {self.bucket_precision!r}"
            )
        statuses = tuple(self.suspicious_statuses)
        for status in statuses:
            if not _is_int(status):
                raise ConfigError(f"suspicious status must be an integer, got {status!r}")
        object.__setattr__(self, "suspicious_statuses", statuses)
        if not isinstance(self.skip_header, bool):
            raise ConfigError(f"skip_header must be a boolean, got {self.skip_header!r}")

    def override(self, **changes) -> "AnalysisConfig":
        """Return a copy with every non-None value in ``changes`` applied."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})


def config_from_mapping(data: dict) -> AnalysisConfig:
    known = {f.name for f in fields(AnalysisConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"unknown analysis setting(s): {', '.join(unknown)}")
    values = dict(data)
    if "suspicious_statuses" in values:
        statuses = values["suspicious_statuses"]
        if not isinstance(statuses, (list, tuple)):
            raise ConfigError("suspicious_statuses must be a list of integers")
        values["suspicious_statuses"] = tuple(statuses)
    return AnalysisConfig(**values)


def load_config(path) -> AnalysisConfig:
    """Read the ``[analysis]`` table of a TOML file."""
    path = Path(path)
    try:
        with path.open("rb") as fh:
            doc = tomllib.load(fh)
    except OSError as exc:
        raise ConfigError(f"cannot read config {path}: {exc}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"invalid TOML in {path}: {exc}") from exc
    return config_from_mapping(doc.get("analysis", {}))
