# weblog/models.py
from dataclasses import dataclass, field, fields

FIELDS = ("ip", "timestamp", "url", "status", "user_agent")


@dataclass(frozen=True, slots=True)
class Record:
    """One access log line: ip, timestamp, url, status, user_agent."""

    ip: str
    timestamp: str
    url: str
    status: int
    user_agent: str

    def row(self, exclude=()) -> tuple[str, ...]:
        return tuple(
            str(getattr(self, f.name)) for f in fields(self) if f.name not in exclude
        )


@dataclass(frozen=True)
class TotalCount:
    value: int = 0

    def rows(self):
        return [("total", self.value)]


@dataclass(frozen=True)
class StatusHistogram:
    # insertion order is the rendering order: count desc, status asc
    counts: dict[int, int] = field(default_factory=dict)

    def rows(self):
        return list(self.counts.items())


@dataclass(frozen=True)
class TopN:
    items: list[tuple[str, int]] = field(default_factory=list)

    def rows(self):
        return list(self.items)


@dataclass(frozen=True)
class SuspiciousIPs:
    items: list[tuple[str, int]] = field(default_factory=list)

    def rows(self):
        return list(self.items)


@dataclass(frozen=True)
class TimeTrend:
    items: list[tuple[str, int]] = field(default_factory=list)

    def rows(self):
        return list(self.items)


@dataclass(frozen=True)
class Report:
    """Results of one analysis run, in the order they are exported."""

    total_requests: TotalCount
    status_codes: StatusHistogram
    most_visited: TopN
    top_user_agents: TopN
    suspicious_ips: SuspiciousIPs
    time_trend: TimeTrend

    def __iter__(self):
        for f in fields(self):
            yield f.name, getattr(self, f.name)
