"""
Logger Module for RepForm.

Structured per-session logs for calibration and workout sessions:
- Calibration runs (strategy, device position, resulting profile)
- Rep results and feedback events
- Storage failures and fallbacks

Output formats:
- JSON: full structure for later analysis
- CSV: one row per entry, easy to open in a spreadsheet
- Console: through the standard ``logging`` hierarchy

Author: RepForm Team
Version: 1.0.0
"""

import csv
import json
import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from queue import Empty, Queue
from typing import Dict, List, Optional


class LogLevel(Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogCategory(Enum):
    SESSION = "session"
    CALIBRATION = "calibration"
    STRATEGY = "strategy"
    POSITION = "position"
    REP = "rep"
    FEEDBACK = "feedback"
    STORAGE = "storage"
    SYSTEM = "system"


@dataclass
class LogEntry:
    """
    One log entry.

    Attributes:
        timestamp: ISO time the entry was written.
        level: Log level name.
        category: Log category value.
        message: Human readable text.
        data: Extra structured data.
        session_id: Session the entry belongs to.
    """
    timestamp: str
    level: str
    category: str
    message: str
    data: Optional[Dict] = None
    session_id: str = ""

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "level": self.level,
            "category": self.category,
            "message": self.message,
            "data": self.data or {},
            "session_id": self.session_id,
        }

    def to_csv_row(self) -> List[str]:
        return [
            self.timestamp,
            self.level,
            self.category,
            self.message,
            json.dumps(self.data or {}),
            self.session_id,
        ]


class SessionLogger:
    """
    Logger for one calibration or workout session.

    Entries go to the console logger immediately and to a CSV file
    through a background writer thread; the JSON report is written
    when the session ends.

    Example:
        >>> logger = SessionLogger("./logs")
        >>> logger.start_session("calib_001", "pushup")
        >>> logger.log_rep(1, 0.92)
        >>> logger.end_session({"reps": 1})
    """

    CSV_HEADERS = ["timestamp", "level", "category", "message", "data", "session_id"]

    def __init__(
        self,
        log_dir: str = "./logs",
        console_output: bool = True,
        async_write: bool = True,
    ):
        self._log_dir = Path(log_dir)
        self._log_dir.mkdir(parents=True, exist_ok=True)

        self._console_output = console_output
        self._async_write = async_write
        self._console_logger = logging.getLogger("repform.session")

        self._session_id: Optional[str] = None
        self._session_start: Optional[datetime] = None
        self._entries: List[LogEntry] = []
        self._entries_lock = threading.Lock()

        self._json_file: Optional[Path] = None
        self._csv_file: Optional[Path] = None
        self._csv_writer = None
        self._file_handle = None

        self._write_queue: Queue = Queue()
        self._writer_thread: Optional[threading.Thread] = None
        self._stop_writer = threading.Event()

    @property
    def session_id(self) -> Optional[str]:
        return self._session_id

    def start_session(self, session_id: str, exercise_name: str, user_id: Optional[str] = None) -> None:
        if self._session_id is not None:
            self.end_session({"restarted": True})

        self._session_id = session_id
        self._session_start = datetime.now()
        with self._entries_lock:
            self._entries = []

        date_str = self._session_start.strftime("%Y%m%d")
        time_str = self._session_start.strftime("%H%M%S")

        session_dir = self._log_dir / date_str
        session_dir.mkdir(exist_ok=True)

        self._json_file = session_dir / f"{session_id}_{time_str}.json"
        self._csv_file = session_dir / f"{session_id}_{time_str}.csv"
        self._init_csv_file()

        if self._async_write:
            self._start_async_writer()

        self.log(
            LogLevel.INFO,
            LogCategory.SESSION,
            f"Session started: {exercise_name}",
            {
                "session_id": session_id,
                "exercise_name": exercise_name,
                "user_id": user_id or "anonymous",
                "start_time": self._session_start.isoformat(),
            },
        )

    def _init_csv_file(self) -> None:
        if self._csv_file is None:
            return
        self._file_handle = open(self._csv_file, 'w', newline='', encoding='utf-8')
        self._csv_writer = csv.writer(self._file_handle)
        self._csv_writer.writerow(self.CSV_HEADERS)
        self._file_handle.flush()

    def _start_async_writer(self) -> None:
        self._stop_writer.clear()
        self._writer_thread = threading.Thread(target=self._async_write_loop, name="session-log-writer")
        self._writer_thread.daemon = True
        self._writer_thread.start()

    def _async_write_loop(self) -> None:
        while not self._stop_writer.is_set():
            try:
                entry = self._write_queue.get(timeout=0.5)
            except Empty:
                continue
            self._write_entry(entry)

    def _flush_queue(self) -> None:
        while True:
            try:
                entry = self._write_queue.get_nowait()
            except Empty:
                return
            self._write_entry(entry)

    def _write_entry(self, entry: LogEntry) -> None:
        if self._csv_writer is None:
            return
        try:
            self._csv_writer.writerow(entry.to_csv_row())
            self._file_handle.flush()
        except (OSError, ValueError) as e:
            self._console_logger.warning(f"Session log write failed: {e}")

    def log(self, level: LogLevel, category: LogCategory, message: str, data: Optional[Dict] = None) -> None:
        entry = LogEntry(
            timestamp=datetime.now().isoformat(),
            level=level.value,
            category=category.value,
            message=message,
            data=data,
            session_id=self._session_id or "",
        )
        with self._entries_lock:
            self._entries.append(entry)

        if self._console_output:
            log_method = getattr(self._console_logger, level.value.lower(), self._console_logger.info)
            log_method(f"[{category.value}] {message}")

        if self._async_write and self._writer_thread is not None:
            self._write_queue.put(entry)
        else:
            self._write_entry(entry)

    # ==================== DOMAIN HELPERS ====================

    def log_strategy(self, strategy_name: str, reason: str = "") -> None:
        self.log(
            LogLevel.INFO,
            LogCategory.STRATEGY,
            f"Strategy: {strategy_name}",
            {"strategy": strategy_name, "reason": reason},
        )

    def log_position(self, kind: str, height: Optional[float], angle: Optional[float]) -> None:
        self.log(
            LogLevel.DEBUG,
            LogCategory.POSITION,
            f"Device position: {kind}",
            {"kind": kind, "height": height, "angle": angle},
        )

    def log_calibration(self, profile: Dict, quality: str) -> None:
        score = profile.get("calibration_score", 0)
        self.log(
            LogLevel.INFO,
            LogCategory.CALIBRATION,
            f"Calibration complete: {score:.0f}/100 ({quality})",
            {"profile": profile, "quality": quality},
        )

    def log_rep(self, rep_number: int, form_score: float, issues: Optional[List[str]] = None) -> None:
        self.log(
            LogLevel.INFO,
            LogCategory.REP,
            f"Rep {rep_number}: form {form_score:.2f}",
            {"rep_number": rep_number, "form_score": form_score, "issues": issues or []},
        )

    def log_feedback(self, event: Dict) -> None:
        self.log(
            LogLevel.DEBUG,
            LogCategory.FEEDBACK,
            f"Feedback ({event.get('modality')}): {event.get('message')}",
            event,
        )

    def log_storage_error(self, operation: str, message: str) -> None:
        self.log(
            LogLevel.ERROR,
            LogCategory.STORAGE,
            f"Storage {operation} failed: {message}",
            {"operation": operation, "message": message},
        )

    # ==================== END ====================

    def end_session(self, report: Optional[Dict] = None) -> str:
        """
        Finish the session and write the JSON report.

        Returns:
            Path of the JSON report, or "" when no session was started.
        """
        self.log(LogLevel.INFO, LogCategory.SESSION, "Session ended", {
            "end_time": datetime.now().isoformat(),
            "total_entries": len(self._entries),
        })

        if self._writer_thread is not None:
            self._stop_writer.set()
            self._writer_thread.join(timeout=2.0)
            self._writer_thread = None
        self._flush_queue()

        if self._file_handle:
            self._file_handle.close()
            self._file_handle = None
            self._csv_writer = None

        session_id, self._session_id = self._session_id, None
        if not self._json_file:
            return ""

        with self._entries_lock:
            entries = [e.to_dict() for e in self._entries]
        full_report = {
            "session_id": session_id,
            "session_start": self._session_start.isoformat() if self._session_start else "",
            "session_end": datetime.now().isoformat(),
            "entries": entries,
            "report": report or {},
        }
        with open(self._json_file, 'w', encoding='utf-8') as f:
            json.dump(full_report, f, ensure_ascii=False, indent=2)

        path = str(self._json_file)
        self._json_file = None
        return path

    def get_entries(
        self,
        category: Optional[LogCategory] = None,
        level: Optional[LogLevel] = None,
    ) -> List[LogEntry]:
        with self._entries_lock:
            entries = list(self._entries)
        if category:
            entries = [e for e in entries if e.category == category.value]
        if level:
            entries = [e for e in entries if e.level == level.value]
        return entries

    def get_summary(self) -> Dict:
        entries = self.get_entries()
        return {
            "session_id": self._session_id,
            "total_entries": len(entries),
            "total_reps": sum(1 for e in entries if e.category == LogCategory.REP.value),
            "calibrations": sum(1 for e in entries if e.category == LogCategory.CALIBRATION.value),
            "storage_errors": sum(1 for e in entries if e.category == LogCategory.STORAGE.value),
            "files": {
                "json": str(self._json_file) if self._json_file else "",
                "csv": str(self._csv_file) if self._csv_file else "",
            },
        }
