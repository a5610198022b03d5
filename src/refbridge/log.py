"""Package logger and the ``console`` capability exposed on the root handle."""

import logging
import sys

LOGGER_NAME: str = "refbridge"
CONSOLE_LOGGER_NAME: str = f"{LOGGER_NAME}.console"


class RefBridgeFormatter(logging.Formatter):
    """Format records as ``[refbridge][method_name] message``."""

    def format(self, record: logging.LogRecord) -> str:
        """Format one record with the bridge prefix.

        :param record: Log record.
        :returns: Formatted line.
        """
        method_name: object = getattr(record, "method_name", record.funcName)
        message: str = record.getMessage()
        formatted: str = f"[{LOGGER_NAME}][{method_name}] {message}"
        if record.exc_info:
            formatted = formatted + "\n" + self.formatException(record.exc_info)
        return formatted


_logger: logging.Logger | None = None


def get_logger() -> logging.Logger:
    """Get or create the package logger.

    The logger writes to stderr and does not propagate to the root logger.

    :returns: Configured package logger.
    """
    global _logger

    if _logger is None:
        _logger = logging.getLogger(LOGGER_NAME)
        if len(_logger.handlers) == 0:
            handler: logging.Handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(RefBridgeFormatter())
            _logger.addHandler(handler)
        _logger.propagate = False
        if _logger.level == logging.NOTSET:
            _logger.setLevel(logging.WARNING)

    return _logger


def configure_logging(debug: bool) -> logging.Logger:
    """Set the package log level.

    :param debug: Log at ``DEBUG`` when ``True``, else at ``WARNING``.
    :returns: Package logger.
    """
    logger: logging.Logger = get_logger()
    level: int = logging.WARNING
    if debug is True:
        level = logging.DEBUG
    logger.setLevel(level)
    return logger


class ConsoleCapability:
    """Logging capability the counterpart reaches through ``console``.

    Each method joins its arguments with spaces, the way a console
    ``log`` call prints them, and forwards the line to the package logger.
    """

    _logger: logging.Logger

    def __init__(self) -> None:
        get_logger()
        self._logger = logging.getLogger(CONSOLE_LOGGER_NAME)
        # counterpart output stays visible when the package logger is quiet
        if self._logger.level == logging.NOTSET:
            self._logger.setLevel(logging.INFO)

    def _emit(self, level: int, method_name: str, args: tuple[object, ...]) -> None:
        line: str = " ".join(str(item) for item in args)
        self._logger.log(level, line, extra={"method_name": f"console.{method_name}"})

    def log(self, *args: object) -> None:
        self._emit(logging.INFO, "log", args)

    def info(self, *args: object) -> None:
        self._emit(logging.INFO, "info", args)

    def debug(self, *args: object) -> None:
        self._emit(logging.DEBUG, "debug", args)

    def warn(self, *args: object) -> None:
        self._emit(logging.WARNING, "warn", args)

    def error(self, *args: object) -> None:
        self._emit(logging.ERROR, "error", args)

    def __repr__(self) -> str:
        return "<console>"
