"""Session log for Cicerone: console, file and map view panel."""

import json
from datetime import datetime
from typing import Callable, Optional

from .errors import GuideError


class Logger:
    """Writes one line per guide event, with structured data appended as JSON.

    Lines go to stdout (unless echo is off), to the session log file and to
    an optional callback, which the map view uses to fill its log panel.
    """

    RULE = "=" * 60

    def __init__(self, log_path: Optional[str] = None, callback: Optional[Callable] = None,
                 echo: bool = True):
        self.log_path = log_path
        self.callback = callback
        self.echo = echo
        self.file = open(log_path, "a") if log_path else None
        if self.file:
            started = datetime.now().isoformat(timespec="seconds")
            self.file.write(f"\n{self.RULE}\nCicerone session {started}\n{self.RULE}\n\n")
            self.file.flush()

    def log(self, message: str, data: Optional[dict] = None):
        stamp = datetime.now().strftime("%H:%M:%S.%f")[:-3]
        line = f"[{stamp}] {message}"
        if data:
            # Locations, enums and timestamps fall back to str()
            line = f"{line} | {json.dumps(data, default=str, ensure_ascii=False)}"
        if self.echo:
            print(line)
        if self.file:
            self.file.write(f"{line}\n")
            self.file.flush()
        if self.callback:
            self.callback(message, data)

    def warning(self, message: str, data: Optional[dict] = None):
        self.log(f"WARNING: {message}", data)

    def error(self, message: str, err: GuideError):
        """Log a non-fatal guide error with its details"""
        self.log(f"ERROR: {message}", err.to_dict())

    def close(self):
        if self.file:
            self.file.close()
            self.file = None
