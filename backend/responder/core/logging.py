import logging, os, json, sys
from collections import deque
from typing import Dict, List, Optional

LOG_EXTRA_KEYS = [
    "trace_id","method","path","status","duration_ms",
    "user_id","email_id","batch","batches","count","skipped","category","provider","model",
]

def _extras(record: logging.LogRecord) -> Dict:
    return {k: getattr(record, k) for k in LOG_EXTRA_KEYS if hasattr(record, k)}

class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # pragma: no cover (formatting)
        base = {
            "time": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        base.update(_extras(record))
        if record.exc_info:
            base["exc"] = self.formatException(record.exc_info)
        return json.dumps(base, ensure_ascii=False, default=str)


class RingBufferHandler(logging.Handler):
    """Keeps the most recent `capacity` log records in memory (oldest evicted first).

    Backs the debug log view at /api/analytics/logs.
    """

    def __init__(self, capacity: int = 1000, level=logging.NOTSET):
        super().__init__(level)
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self._entries: deque = deque(maxlen=capacity)

    def emit(self, record: logging.LogRecord) -> None:
        entry = {
            "time": self.formatter.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S") if self.formatter else record.created,
            "level": record.levelname,
            "category": record.name,
            "msg": record.getMessage(),
        }
        data = _extras(record)
        if data:
            entry["data"] = data
        self._entries.append(entry)

    def entries(self, category: Optional[str] = None, limit: Optional[int] = None, user_id: Optional[int] = None) -> List[Dict]:
        """Buffered entries, oldest first.

        With `user_id`, entries tagged with a different user are left out;
        untagged process-level entries are kept.
        """
        with self.lock:
            items = list(self._entries)
        if user_id is not None:
            items = [e for e in items if e.get("data", {}).get("user_id", user_id) == user_id]
        if category:
            items = [e for e in items if e["category"].startswith(category)]
        if limit is not None:
            items = items[-limit:] if limit > 0 else []
        return items

    def clear(self) -> None:
        with self.lock:
            self._entries.clear()

    def __len__(self):
        return len(self._entries)


log_buffer = RingBufferHandler(int(os.getenv("LOG_BUFFER_SIZE", "1000")))
log_buffer.setFormatter(logging.Formatter())

def init_logging():
    level = os.getenv("LOG_LEVEL","INFO").upper()
    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    root.addHandler(handler)
    root.addHandler(log_buffer)
    root.setLevel(level)
    logging.getLogger("uvicorn.access").propagate = False
    logging.getLogger("uvicorn.error").propagate = False
