"""
Communication log.
Appends every request/response exchange with the chat endpoint to a
JSON-lines file. Logging is best effort: failures never reach the caller.
"""

import json
import logging
import os
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from config import app_config, get_comm_log_path

logger = logging.getLogger(__name__)


class CommunicationLogger:
    """Best-effort JSONL writer for request/response pairs."""

    def __init__(self, path: Optional[str] = None, enabled: Optional[bool] = None):
        self.path = path or get_comm_log_path()
        self.enabled = app_config.comm_log_enabled if enabled is None else enabled
        self._lock = threading.Lock()

    def log_exchange(
        self,
        request: Dict[str, Any],
        response: Optional[Dict[str, Any]],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        if not self.enabled:
            return
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "request": request,
            "response": response,
            "metadata": metadata or {},
        }
        try:
            line = json.dumps(entry, ensure_ascii=False, default=str)
            with self._lock:
                directory = os.path.dirname(self.path)
                if directory:
                    os.makedirs(directory, exist_ok=True)
                with open(self.path, "a", encoding="utf-8") as f:
                    f.write(line + "\n")
        except Exception as e:
            logger.debug(f"Communication log write failed: {e}")
