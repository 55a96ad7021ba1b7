import json
import sys
from datetime import datetime, timezone

from .config import settings


def json_log(level: str, event: str, **fields):
    if level == "debug" and not settings.log_debug:
        return
    rec = {"ts": datetime.now(timezone.utc).isoformat(), "level": level, "event": event, **fields}
    print(json.dumps(rec, default=str), file=sys.stderr)
