"""
authz.logger
~~~~~~~~~~~~
One structured record per authorization stage.  JSON lines on stdout (what
CloudWatch picks up from a Lambda), optionally mirrored to a rotating file.
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict

_ISO = "%Y-%m-%dT%H:%M:%SZ"


class Stage(str, Enum):
    REQUEST = "REQUEST"
    ALLOW = "ALLOW"
    DENY = "DENY"
    ERROR = "ERROR"


def _now() -> str:  # RFC-3339 without microseconds
    return datetime.now(tz=timezone.utc).strftime(_ISO)


class _PlainFormatter(logging.Formatter):
    """ e.g. 2025-06-19T15:07:02Z DENY alice updateChecklistItem item_not_found item=i-1 """

    def format(self, record):  # type: ignore[override]
        d: Dict[str, Any] = record.msg if isinstance(record.msg, dict) else {}
        if not d:
            return super().format(record)

        parts = [
            d.get("ts", _now()),
            d.get("stage", "-"),
            d.get("user") or "-",
            d.get("operation") or "-",
            d.get("reason") or "-",
        ]
        for key, label in (("checklistId", "checklist"), ("sectionId", "section"),
                           ("itemId", "item"), ("role", "role")):
            if d.get(key):
                parts.append(f"{label}={d[key]}")
        return " ".join(str(p) for p in parts)


class _JSONFormatter(logging.Formatter):
    def format(self, record):  # type: ignore[override]
        if not isinstance(record.msg, dict):
            return json.dumps({"type": "LOG", "ts": _now(), "msg": record.getMessage()})
        return json.dumps(record.msg, separators=(",", ":"), default=str)


class AuditLogger:
    """
    Writes through the shared ``authz.audit`` logger.  The most recently
    built instance owns the output: its handlers replace, and close, the
    ones a previous instance attached.
    """

    def __init__(
        self,
        log_path: str | Path | None = None,
        fmt: str = "json",
        level: str | int = logging.INFO,
        stream=None,
    ):
        root = logging.getLogger("authz.audit")
        root.setLevel(level)
        root.propagate = False  # keep decisions out of the root logger
        for old in list(root.handlers):
            root.removeHandler(old)
            old.close()

        h = logging.StreamHandler(stream or sys.stdout)
        h.setFormatter(_PlainFormatter() if fmt == "plain" else _JSONFormatter())
        root.addHandler(h)

        if log_path:
            basename = Path(log_path).with_suffix("")  # authz_audit
            jsonl_file = basename.with_suffix(".jsonl")

            # json lines
            fh = logging.handlers.TimedRotatingFileHandler(
                jsonl_file, when="midnight", backupCount=7, encoding="utf-8"
            )
            fh.setFormatter(_JSONFormatter())
            root.addHandler(fh)

        self.log = root

    def record(self, stage: Stage | str, **fields: Any) -> None:
        stage = Stage(stage)
        entry: Dict[str, Any] = {"type": "AUTHZ", "ts": _now(), "stage": stage.value}
        entry.update({k: v for k, v in fields.items() if v is not None})
        if stage is Stage.ERROR:
            self.log.error(entry)
        elif stage is Stage.DENY:
            self.log.warning(entry)
        else:
            self.log.info(entry)

    def request(self, user: str, operation: str, **fields: Any) -> None:
        self.record(Stage.REQUEST, user=user, operation=operation, **fields)

    def allow(self, user: str | None, operation: str | None, reason: str, **fields: Any) -> None:
        self.record(Stage.ALLOW, user=user, operation=operation, reason=reason, **fields)

    def deny(self, user: str | None, operation: str | None, reason: str, **fields: Any) -> None:
        self.record(Stage.DENY, user=user, operation=operation, reason=reason, **fields)

    def error(self, user: str | None, operation: str | None, error: BaseException, **fields: Any) -> None:
        self.record(
            Stage.ERROR,
            user=user,
            operation=operation,
            reason="internal_error",
            error=f"{type(error).__name__}: {error}",
            **fields,
        )
