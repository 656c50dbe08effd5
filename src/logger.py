"""
Centralized logging configuration for Route Packer.

This module provides the logging system shared by every part of the player:
- Structured JSON logging for easy parsing and analysis
- Automatic file rotation (prevents log files from growing indefinitely)
- Configurable log levels (DEBUG, INFO, WARNING, ERROR, CRITICAL)
- Automatic cleanup of old logs (retention policy)
- Both file and console output for development and production
- Context-aware logging (run_id, packing_session_id, picker_id)

Pickers work hands-free while a session narrates instructions, so a failed
pick-status sync never interrupts them. The log is the only place those
failures become visible, which makes it the audit trail for a run.

Log file location: [Logging] LogDirectory from config.ini,
falling back to ~/.route_packer/logs
Log file format: YYYY-MM-DD.log

Example log entry (JSON format):
    {"timestamp": "2025-11-20T07:30:45.123", "level": "INFO", "tool": "route_packer",
     "run_id": "run-42", "packing_session_id": "ps-7", "picker_id": null,
     "module": "packing_session_player", "function": "go_forward", "line": 310,
     "message": "Advanced to command 5/18 (item)"}
"""

import logging
import json
import os
from datetime import datetime, timedelta
from pathlib import Path
from logging.handlers import RotatingFileHandler
from typing import Optional, Dict, Any
import configparser
from contextvars import ContextVar


# Context variables for structured logging
_run_id: ContextVar[Optional[str]] = ContextVar('run_id', default=None)
_packing_session_id: ContextVar[Optional[str]] = ContextVar('packing_session_id', default=None)
_picker_id: ContextVar[Optional[str]] = ContextVar('picker_id', default=None)


class StructuredJSONFormatter(logging.Formatter):
    """
    Custom JSON formatter for structured logging.

    Outputs log records as JSON with fields:
    - timestamp: ISO 8601 format with milliseconds
    - level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    - tool: Always "route_packer"
    - run_id: Current run context (if set)
    - packing_session_id: Current packing session context (if set)
    - picker_id: Current picker context (if set)
    - module: Module name
    - function: Function name
    - line: Line number
    - message: Log message
    - exc_info: Exception information (if present)
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'tool': 'route_packer',
            'run_id': _run_id.get(),
            'packing_session_id': _packing_session_id.get(),
            'picker_id': _picker_id.get(),
            'module': record.name,
            'function': record.funcName,
            'line': record.lineno,
            'message': record.getMessage(),
        }

        if record.exc_info:
            log_data['exc_info'] = self.formatException(record.exc_info)

        if hasattr(record, 'extra_data'):
            log_data['extra'] = record.extra_data

        return json.dumps(log_data, ensure_ascii=False)


class AppLogger:
    """
    Centralized application logger with file rotation and cleanup.

    Logging is configured once, on the first call to get_logger(), no matter
    how many modules import it.

    The logging system is configured from config.ini with these settings:
    - LogLevel: DEBUG, INFO, WARNING, ERROR, CRITICAL
    - MaxLogSizeMB: Maximum size per log file before rotation
    - LogRetentionDays: How many days of logs to keep
    - LogDirectory: Where daily log files are written

    Attributes:
        _initialized: Whether logging has been configured (class-level)
        config_path: config.ini consulted on first initialization (class-level)
    """

    _initialized: bool = False
    config_path: str = 'config.ini'

    @classmethod
    def get_logger(cls, name: str = 'RoutePacker') -> logging.Logger:
        """
        Get or create application logger with lazy initialization.

        Usage in modules:
            from logger import get_logger
            logger = get_logger(__name__)
            logger.info("Loading audio commands")

        Args:
            name: Logger name, typically the module name (__name__)

        Returns:
            Configured logger instance for the specified name
        """
        if not cls._initialized:
            cls._setup_logging()
            cls._initialized = True

        return logging.getLogger(name)

    @classmethod
    def _setup_logging(cls):
        """
        Setup logging configuration from config.ini.

        Configures:
        1. Log directory and daily file path
        2. Log level (from config or default to INFO)
        3. JSON file handler with rotation
        4. Human-readable console handler
        5. Old log cleanup
        """
        config = cls._load_config(cls.config_path)

        # === LOG DIRECTORY SETUP ===
        configured_dir = config.get('Logging', 'LogDirectory', fallback='').strip()
        default_dir = Path(os.path.expanduser("~")) / ".route_packer" / "logs"
        log_dir = Path(configured_dir) if configured_dir else default_dir

        try:
            log_dir.mkdir(parents=True, exist_ok=True)
        except Exception as e:
            log_dir = default_dir
            log_dir.mkdir(parents=True, exist_ok=True)
            print(f"Warning: Could not create log directory. Using local: {log_dir}. Error: {e}")

        log_file = log_dir / f"{datetime.now():%Y-%m-%d}.log"

        # === LOG LEVEL CONFIGURATION ===
        log_level_str = config.get('Logging', 'LogLevel', fallback='INFO')
        log_level = getattr(logging, log_level_str.upper(), logging.INFO)

        max_log_size = config.getint('Logging', 'MaxLogSizeMB', fallback=10) * 1024 * 1024

        # === LOG FORMATTERS ===
        json_formatter = StructuredJSONFormatter()

        # Example: 2025-11-20 07:30:45 | packing_session_player | INFO | go_forward:310 | Advanced
        console_formatter = logging.Formatter(
            fmt='%(asctime)s | %(name)s | %(levelname)s | %(funcName)s:%(lineno)d | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

        # === FILE HANDLER ===
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_log_size,
            backupCount=30,
            encoding='utf-8'
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(json_formatter)

        # === CONSOLE HANDLER ===
        console_handler = logging.StreamHandler()
        console_handler.setLevel(log_level)
        console_handler.setFormatter(console_formatter)

        root_logger = logging.getLogger()
        root_logger.setLevel(log_level)
        root_logger.addHandler(file_handler)
        root_logger.addHandler(console_handler)

        # === CLEANUP OLD LOGS ===
        retention_days = config.getint('Logging', 'LogRetentionDays', fallback=30)
        cls._cleanup_old_logs(log_dir, retention_days)

        logger = logging.getLogger('RoutePacker')
        logger.info("=" * 80)
        logger.info("Route Packer Started")
        logger.info(f"Log Level: {log_level_str}")
        logger.info(f"Log File: {log_file}")
        logger.info("=" * 80)

    @staticmethod
    def _load_config(config_path: str = 'config.ini') -> configparser.ConfigParser:
        """
        Load logging configuration from config.ini.

        Configuration options:
            [Logging]
            LogLevel = INFO
            MaxLogSizeMB = 10
            LogRetentionDays = 30
            LogDirectory =

        Returns:
            ConfigParser object with loaded configuration.
            Empty ConfigParser if config.ini is not found (non-fatal).
        """
        config = configparser.ConfigParser()
        path = Path(config_path)

        if path.exists():
            config.read(path, encoding='utf-8')

        return config

    @staticmethod
    def _cleanup_old_logs(log_dir: Path, retention_days: int):
        """
        Delete log files older than the retention period.

        Args:
            log_dir: Directory containing log files
            retention_days: Number of days to keep logs.
                            0 or negative disables cleanup.
        """
        if retention_days <= 0:
            return

        cutoff_date = datetime.now() - timedelta(days=retention_days)

        try:
            # Matches 2025-11-20.log as well as rotated 2025-11-20.log.1
            for log_file in log_dir.glob("*.log*"):
                file_mtime = datetime.fromtimestamp(log_file.stat().st_mtime)

                if file_mtime < cutoff_date:
                    log_file.unlink()
                    logging.getLogger('RoutePacker').debug(f"Deleted old log: {log_file.name}")

        except Exception as e:
            # Non-fatal: file in use, permissions, or a disconnected drive
            logging.getLogger('RoutePacker').warning(f"Failed to cleanup old logs: {e}")


# Convenience functions
def get_logger(name: str = 'RoutePacker') -> logging.Logger:
    """
    Get application logger.

    Example:
        >>> from logger import get_logger
        >>> logger = get_logger(__name__)
        >>> logger.info("Starting packing session")
    """
    return AppLogger.get_logger(name)


def set_run_context(run_id: Optional[str]) -> None:
    """
    Set current run ID for structured logging context.

    Args:
        run_id: Run identifier or None to clear
    """
    _run_id.set(run_id)


def set_packing_session_context(packing_session_id: Optional[str]) -> None:
    """
    Set current packing session ID for structured logging context.

    Args:
        packing_session_id: Packing session identifier or None to clear
    """
    _packing_session_id.set(packing_session_id)


def set_picker_context(picker_id: Optional[str]) -> None:
    """Set the picker (user) ID included in subsequent log entries."""
    _picker_id.set(picker_id)


def clear_logging_context() -> None:
    """
    Clear all logging context (run_id, packing_session_id, picker_id).

    Called when a packing session ends so later entries are not attributed
    to it.
    """
    _run_id.set(None)
    _packing_session_id.set(None)
    _picker_id.set(None)
