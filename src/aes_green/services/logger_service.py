from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

from aes_green.storage import MessagePackStore

MAX_LOG_ROWS = 2000


class LoggerService:
    def __init__(self, store: MessagePackStore, *, echo: bool = True) -> None:
        self.store = store
        self.echo = echo
        self._listeners: list[Callable[[dict[str, object]], None]] = []

    def subscribe(self, listener: Callable[[dict[str, object]], None]) -> None:
        self._listeners.append(listener)

    def log(self, event: str, **data: object) -> dict[str, object]:
        row: dict[str, object] = {
            "ts": datetime.now(tz=timezone.utc).isoformat(),
            "event": event,
            "data": data,
        }
        logs = self.store.data.setdefault("logs", [])
        logs.append(row)
        if len(logs) > MAX_LOG_ROWS:
            del logs[: len(logs) - MAX_LOG_ROWS]
        self.store.touch()
        if self.echo:
            print(f"[{row['ts']}] {event} {data}")
        for listener in self._listeners:
            try:
                listener(row)
            except Exception:  # noqa: BLE001
                continue
        return row

    def diagnostic(self, kind: str, **context: object) -> dict[str, object]:
        return self.log(f"template.{kind}", kind=kind, **context)

    def recent(self, prefix: str = "", limit: int = 50) -> list[dict[str, object]]:
        rows = [row for row in self.store.data.get("logs", []) if str(row.get("event", "")).startswith(prefix)]
        return rows[-max(1, int(limit)) :]
