"""Text exports of logs and traces for the ``format=csv|text`` query option."""

import csv
import io
from typing import Iterable, List

from questforge_ai.execution.schemas.domain import LogEntry, TraceEvent

LOG_CSV_HEADERS = ["id", "level", "message", "timestamp", "source"]
TRACE_CSV_HEADERS = ["id", "timestamp", "type", "content", "duration"]


def _to_csv(headers: List[str], rows: Iterable[list]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(headers)
    writer.writerows(rows)
    return buffer.getvalue()


def logs_to_csv(logs: Iterable[LogEntry]) -> str:
    return _to_csv(
        LOG_CSV_HEADERS,
        ([log.id, log.level.value, log.message, log.timestamp.isoformat(), log.source] for log in logs),
    )


def logs_to_text(logs: List[LogEntry]) -> str:
    """One line per entry: ``<iso timestamp> <LEVEL> [source] message``."""
    if not logs:
        return "No logs available.\n"
    lines = [
        f"{log.timestamp.isoformat()} {log.level.value.upper():<7} [{log.source}] {log.message}" for log in logs
    ]
    return "\n".join(lines) + "\n"


def traces_to_csv(traces: Iterable[TraceEvent]) -> str:
    return _to_csv(
        TRACE_CSV_HEADERS,
        (
            [t.id, t.timestamp.isoformat(), t.type.value, t.content, "" if t.duration is None else t.duration]
            for t in traces
        ),
    )
