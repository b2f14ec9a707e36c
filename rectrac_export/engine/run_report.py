import json
from datetime import datetime
from pathlib import Path
from typing import Any


class RunReport:
    """Timestamped event log of one export run, written as JSON."""

    def __init__(self):
        self.events: list[dict] = []
        self.start_time: datetime | None = None
        self.end_time: datetime | None = None
        self.status: str = "pending"

    def _event(self, event_type: str, **fields: Any) -> dict:
        now = datetime.now()
        event = {"type": event_type, **fields, "timestamp": now.isoformat(), "time": now.strftime("%H:%M:%S")}
        self.events.append(event)
        return event

    def start_run(self, login_url: str, terms: list[str]):
        self.start_time = datetime.now()
        self._event("run_start", login_url=login_url, terms=list(terms))

    def log_phase(self, phase: str, status: str, details: dict | None = None):
        self._event("phase", phase=phase, status=status, details=details or {})

    def log_states(self, states: list[str]):
        self._event("auth_states", states=list(states))

    def log_resolution(self, target: str, candidate: str, root: str):
        self._event("resolution", target=target, candidate=candidate, root=root)

    def log_surface(self, surface: str):
        self._event("surface", surface=surface)

    def log_capture(self, trigger: str | None, channel: str | None, source: str | None,
                    size: int, attempts: list[str]):
        self._event("capture", trigger=trigger, channel=channel, source=source, size=size, attempts=attempts)

    def log_extraction(self, data_rows: int, kept: int, output: str):
        self._event("extraction", data_rows=data_rows, kept=kept, output=output)

    def log_error(self, phase: str, error: str, kind: str, diagnostics: list[str] | None = None):
        self._event("error", phase=phase, error=error, kind=kind, diagnostics=diagnostics or [])

    def end_run(self, status: str):
        self.status = status
        self.end_time = datetime.now()
        duration = (self.end_time - self.start_time).total_seconds() if self.start_time else 0
        self._event("run_end", status=status, duration_seconds=duration)

    def summary(self) -> dict:
        return {
            "status": self.status,
            "started": self.start_time.isoformat() if self.start_time else None,
            "ended": self.end_time.isoformat() if self.end_time else None,
            "events": self.events,
        }

    def write_json(self, directory: Path | str) -> Path:
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)
        stamp = (self.end_time or datetime.now()).strftime("%Y%m%d_%H%M%S")
        path = directory / f"run-report-{stamp}.json"
        path.write_text(json.dumps(self.summary(), indent=2, default=str))
        return path
