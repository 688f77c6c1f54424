"""
logging.py – JSON/std-out logger for every service
"""

from __future__ import annotations
import hashlib, hmac, json, logging, os, sys, threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Mapping, Any

# root config (no 'stream=' dup error)
_log_level = os.getenv("LOG_LEVEL") or ("DEBUG" if os.getenv("ENVIRONMENT", "dev") == "dev" else "INFO")
logging.basicConfig(level=_log_level.upper(), handlers=[])

class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:          # noqa: D401
        msg: Mapping[str, Any] = {
            "ts":  datetime.now(tz=timezone.utc).isoformat(timespec="seconds"),
            "lvl": record.levelname,
            "src": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            msg["exc"] = self.formatException(record.exc_info)
        return json.dumps(msg, ensure_ascii=False)

def get_logger(name: str) -> logging.Logger:
    logger = logging.getLogger(name)
    if not logger.handlers:                       # only add once / logger
        h = logging.StreamHandler(sys.stdout)
        h.setFormatter(JsonFormatter())
        logger.addHandler(h)
        logger.propagate = False
        logger.setLevel(_log_level.upper())
    return logger


# ───── signed audit trail (prod only) ─────────────────────────────────
class AuditLog:
    """
    Append-only text file of trade actions. Each line is followed by an
    HMAC-SHA256 signature line so tampering is detectable offline.
    """

    def __init__(self, path: str | Path, secret: str, enabled: bool = True) -> None:
        self.path = Path(path)
        self.secret = secret.encode()
        self.enabled = enabled and bool(secret)
        self._lock = threading.Lock()
        self._log = get_logger("audit")

    def sign(self, line: str) -> str:
        return hmac.new(self.secret, line.encode(), hashlib.sha256).hexdigest()

    def record(self, action: str) -> None:
        self._log.info(action)
        if not self.enabled:
            return
        line = f"[{datetime.now(tz=timezone.utc).isoformat()}] {action}"
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock, self.path.open("a", encoding="utf-8") as fh:
            fh.write(line + "\n")
            fh.write(f"{line} [Signature: {self.sign(line)}]\n")

    def verify(self) -> bool:
        """True if every signed line in the file matches its signature."""
        if not self.path.exists():
            return True
        for raw in self.path.read_text(encoding="utf-8").splitlines():
            if " [Signature: " not in raw:
                continue
            line, sig = raw.rsplit(" [Signature: ", 1)
            if not hmac.compare_digest(self.sign(line), sig.rstrip("]")):
                return False
        return True
