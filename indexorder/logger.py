"""
Index Order Logging System
==========================

A unified, thread-safe logging utility for the order service. This module
integrates with the standard Python `logging` library and the `rich` library
to provide safe and visually distinct console output plus a rotating log file.

Usage:
    >>> from indexorder.logger import get_logger
    >>> logger = get_logger(__name__)
    >>> logger.info("Order service started")
"""

import logging
import logging.handlers
import re
import sys
import threading
import time
from pathlib import Path
from typing import Optional, List, Tuple

from rich.console import Console
from rich.highlighter import RegexHighlighter
from rich.logging import RichHandler
from rich.theme import Theme

from .constants import (
    LOG_LEVEL,
    LOG_FORMAT,
    LOG_DATE_FORMAT,
    LOG_MAX_FILE_SIZE,
    LOG_BACKUP_COUNT,
    LOG_CONSOLE_HIGHLIGHTING,
    LOG_FILE_OUTPUT,
)


PROJECT_ROOT = Path(__file__).parent.parent
LOG_FILE_PATH = PROJECT_ROOT / "logs" / "indexorder.log"

DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class LogManager:
    """
    Manages logging configuration via the Singleton pattern.

    The logging subsystem is initialized exactly once: a Rich console handler
    and, optionally, a rotating file handler are attached to the root logger.
    """

    _instance: Optional["LogManager"] = None
    _lock: threading.Lock = threading.Lock()


    def __new__(cls) -> "LogManager":
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance


    def __init__(self) -> None:
        if self._initialized:
            return
        self._configured = False
        self._initialized = True


    @staticmethod
    def validate_log_format(log_format: str) -> str:
        """
        Validates the syntax of a logging format string.

        Every ``(name)x`` specifier must be preceded by ``%`` and a dummy record
        must format cleanly.

        Returns:
            str: The validated format string, or the default `LOG_FORMAT` if validation fails.
        """
        if not log_format:
            return str(LOG_FORMAT.default())

        log_format = str(log_format)
        format_specifier_pattern = r"\([a-zA-Z_][a-zA-Z0-9_]*\)[a-zA-Z]"

        try:
            for match in re.finditer(format_specifier_pattern, log_format):
                start_pos = match.start()
                if start_pos == 0 or log_format[start_pos - 1] != "%":
                    raise ValueError("Malformed format specifier.")

            formatter = logging.Formatter(fmt=log_format)
            record = logging.LogRecord(
                name="test", level=logging.INFO, pathname="", lineno=0,
                msg="test", args=(), exc_info=None,
            )
            formatted_output = formatter.format(record)
            if re.search(format_specifier_pattern, formatted_output):
                raise ValueError("Format specifiers not properly processed.")
            return log_format
        except (ValueError, KeyError, TypeError) as e:
            print(
                f"{time.strftime(DEFAULT_DATE_FORMAT)} - indexorder.logger - Validation Error: {e}. Using default.",
                file=sys.stderr,
            )
            return str(LOG_FORMAT.default())


    @staticmethod
    def validate_date_format(date_format: str) -> str:
        """Validates a strftime date format, falling back to the default."""
        if not date_format:
            return str(LOG_DATE_FORMAT.default())

        date_format = str(date_format)

        # Strictly strftime directives and plain separators
        date_format_pattern = re.compile(
            rf"^(?=.*%(?!%)(?:[EO])?(?:[-_0^#])*(?:[A-DF-HIM-NPR-VW-Za-hj-lm-npr-uw-z]))"
            rf"(?:%%|%(?:[EO])?(?:[-_0^#])*(?:[A-DF-HIM-NPR-VW-Za-hj-lm-npr-uw-z])|[0-9 \t:\-\/\.,TZ+])+$"
        )

        if not date_format_pattern.match(date_format):
            print(
                f"{time.strftime(str(LOG_DATE_FORMAT.default()))} - indexorder.logger - "
                f"Invalid date format. Using default.",
                file=sys.stderr,
            )
            return str(LOG_DATE_FORMAT.default())

        return date_format


    def configure(
        self,
        log_level: Optional[str] = None,
        log_file: Optional[Path] = None,
        console_output: bool = True,
        file_output: Optional[bool] = None,
    ) -> None:
        """
        Configures the root logger with console and file handlers.

        Args:
            log_level (Optional[str]): Logging level (DEBUG, INFO, etc.). Defaults to env var.
            log_file (Optional[Path]): Path to log file. Defaults to `logs/indexorder.log`.
            console_output (bool): Enable console logging. Defaults to True.
            file_output (Optional[bool]): Enable rotating file logging. Defaults to `LOG_FILE_OUTPUT`.
        """
        with self._lock:
            if self._configured:
                return

            level_str = log_level or LOG_LEVEL
            numeric_level = getattr(logging, str(level_str).upper(), logging.INFO)

            root_logger = logging.getLogger()
            root_logger.setLevel(numeric_level)

            # Keep networking and server libraries quiet
            for lib in ["httpx", "httpx._client", "httpcore", "uvicorn.access"]:
                logging.getLogger(lib).setLevel(logging.WARNING)
            for lib in ["uvicorn.error", "uvicorn", "uvicorn.asgi"]:
                logging.getLogger(lib).setLevel(logging.ERROR)

            root_logger.handlers.clear()

            log_format = self.validate_log_format(LOG_FORMAT)
            date_format = self.validate_date_format(LOG_DATE_FORMAT)

            # UTC everywhere
            formatter = TerminalSafeFormatter(fmt=log_format, datefmt=date_format + " UTC")
            formatter.converter = time.gmtime

            if console_output:
                if LOG_CONSOLE_HIGHLIGHTING:
                    order_theme = Theme(
                        {
                            "indexorder.address":         "cyan",
                            "indexorder.arrow":           "bold yellow",
                            "indexorder.http_version":    "bold dim",
                            "indexorder.index":           "bold blue",
                            "indexorder.ip":              "cyan",
                            "indexorder.level_critical":  "bold red reverse",
                            "indexorder.level_debug":     "bold dim",
                            "indexorder.level_error":     "bold red",
                            "indexorder.level_info":      "bold green",
                            "indexorder.level_warning":   "bold yellow",
                            "indexorder.logger_name":     "magenta",
                            "indexorder.method":          "bold white",
                            "indexorder.order_hash":      "bold cyan",
                            "indexorder.error_code":      "bold red",
                            "indexorder.status_critical": "bold red reverse",
                            "indexorder.status_error":    "bold red",
                            "indexorder.status_redirect": "bold yellow",
                            "indexorder.status_success":  "bold green",
                            "indexorder.tag":             "bold magenta",
                            "indexorder.timestamp":       "bold cyan",
                            "indexorder.url":             "cyan",
                        }
                    )

                    console = Console(theme=order_theme, highlight=False)

                    rich_handler = RichHandler(
                        console=console,
                        highlighter=OrderLogHighlighter(),
                        keywords=[],
                        rich_tracebacks=True,
                        omit_repeated_times=False,
                        show_path=False,
                        show_time=False,
                        show_level=False,
                        markup=False,
                    )
                    rich_handler.setLevel(numeric_level)
                    rich_handler.setFormatter(formatter)
                    root_logger.addHandler(rich_handler)
                else:
                    console_handler = logging.StreamHandler(sys.stdout)
                    console_handler.setLevel(numeric_level)
                    console_handler.setFormatter(formatter)
                    root_logger.addHandler(console_handler)

            if file_output is None:
                file_output = bool(LOG_FILE_OUTPUT)

            if file_output:
                log_file_path = log_file or LOG_FILE_PATH
                log_file_path.parent.mkdir(parents=True, exist_ok=True)

                file_handler = logging.handlers.RotatingFileHandler(
                    filename=str(log_file_path),
                    maxBytes=LOG_MAX_FILE_SIZE,
                    backupCount=LOG_BACKUP_COUNT,
                    encoding="utf-8",
                )
                file_handler.setLevel(numeric_level)
                file_handler.setFormatter(formatter)
                root_logger.addHandler(file_handler)

            self._configured = True


    def set_level(self, log_level: str) -> None:
        """Change the level of the root logger and its handlers after configuration."""
        numeric_level = getattr(logging, str(log_level).upper(), logging.INFO)
        root_logger = logging.getLogger()
        root_logger.setLevel(numeric_level)
        for handler in root_logger.handlers:
            handler.setLevel(numeric_level)


    def get_logger(self, name: str) -> logging.Logger:
        if not self._configured:
            self.configure()
        return logging.getLogger(name)


class TerminalSafeFormatter(logging.Formatter):
    """
    Formatter that strips ANSI escape sequences and control characters.

    Order payloads and request paths are user controlled, so every rendered
    record is sanitized before it reaches a terminal or the log file.
    """

    _ansi_escape_re = re.compile(
        r"\x1b\[[0-?]*[ -/]*[@-~]"
        r"|\x1b[@-Z\\-_]"
    )
    # Control chars excluding tab and newline
    _control_chars_re = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
    _carriage_return_re = re.compile(r"\r")


    @classmethod
    def sanitize(cls, text: str) -> str:
        if not text:
            return text
        text = cls._ansi_escape_re.sub("", text)
        text = cls._carriage_return_re.sub("", text)
        text = cls._control_chars_re.sub("", text)
        return text


    def format(self, record: logging.LogRecord) -> str:
        return self.sanitize(super().format(record))


class OrderLogHighlighter(RegexHighlighter):
    """
    Rich highlighter for service logs.

    Colors order hashes, addresses, index references, HTTP methods and
    statuses. URL paths inside quoted request lines are never highlighted.
    """

    base_style = "indexorder."
    highlights = [
        r"(?P<arrow>(\-\->)|(<--))",
        r"(?P<http_version>HTTP/\d(?:\.\d)?)",
        r"(?P<ip>(?<!//)(?<!\d)\b((?:\d{1,3}\.){3}\d{1,3}(?::\d+)?)\b)",
        r"(?P<level_critical>\bCRITICAL\b)",
        r"(?P<level_debug>\bDEBUG\b)",
        r"(?P<level_error>\bERROR\b)",
        r"(?P<level_info>\bINFO\b)",
        r"\-\s+\w+\s+-\s+(?P<logger_name>[\w.]+)(?=\s-\s)",
        r"(?P<level_warning>\bWARNING\b)",
        r"(?P<method>\b(GET|POST|PUT|DELETE|PATCH|OPTIONS|HEAD)\b)",
        r"(?P<order_hash>\b0x[0-9a-fA-F]{64}\b)",
        r"(?P<address>\b0x[0-9a-fA-F]{40}\b)",
        r"(?P<index>\bindex #?\d+\b)",
        r"(?P<error_code>\b[A-Z]+(?:_[A-Z]+)+\b)",
        r"(?P<status_critical>(?<!\.)\b5\d{2}\b⁢(?!\.))",
        r"(?P<status_error>(?<!\.)\b4\d{2}\b⁢(?!\.))",
        r"(?P<status_redirect>(?<!\.)\b3\d{2}\b⁢(?!\.))",
        r"(?P<status_success>(?<!\.)\b2\d{2}\b⁢(?!\.))",
        r"(?P<tag>\[.*?\])",
        r"(?P<timestamp>^(.*?)UTC)",
        r"(?P<url>https?://\S+)",
    ]

    _quoted_request_line_re = re.compile(
        r'"(GET|POST|PUT|DELETE|PATCH|OPTIONS|HEAD)\s+(.+)\s+(HTTP/\d(?:\.\d)?)"',
        re.IGNORECASE,
    )


    @classmethod
    def _get_protected_segments(cls, s: str) -> List[Tuple[int, int]]:
        """Return (start, end) spans of request paths that must stay plain."""
        protected = []
        for m in cls._quoted_request_line_re.finditer(s):
            protected.append((m.start(2), m.end(2)))
        return protected


    @staticmethod
    def _overlaps(a_start: int, a_end: int, b_start: int, b_end: int) -> bool:
        return a_start < b_end and a_end > b_start


    def highlight(self, text) -> None:
        super().highlight(text)

        protected_segments = self._get_protected_segments(text.plain)
        if not protected_segments or not text.spans:
            return

        text.spans = [
            span for span in text.spans
            if not any(self._overlaps(span.start, span.end, ps, pe) for ps, pe in protected_segments)
        ]


_manager = LogManager()

def get_logger(name: str) -> logging.Logger:
    """
    Public accessor of the logging system.
    Delegates to the singleton LogManager, ensuring configuration is applied.
    """
    return _manager.get_logger(name)
