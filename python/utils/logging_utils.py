import logging
import traceback
from typing import Optional, Union

DEFAULT_FORMAT = '%(asctime)s - %(levelname)s - %(name)s - %(message)s'


def setup_logging(level: Union[int, str] = logging.INFO, fmt: Optional[str] = None) -> None:
	"""Configure root logging once. Subsequent calls only adjust the level.
	If fmt is not provided, a sensible default is used.
	"""
	if isinstance(level, str):
		level = logging.getLevelName(level.upper())
		if not isinstance(level, int):
			level = logging.INFO
	root = logging.getLogger()
	if root.handlers:
		# Already configured; keep handlers, honour the requested level
		root.setLevel(level)
		return
	logging.basicConfig(level=level, format=fmt or DEFAULT_FORMAT)


def get_logger(name: Optional[str] = None) -> logging.Logger:
	"""Return a module/logger by name, after ensuring logging is configured."""
	setup_logging()
	return logging.getLogger(name) if name else logging.getLogger(__name__)


def log_exception(logger: logging.Logger, message: str = "An error occurred", exc_info: Exception = None) -> None:
	"""Centralized exception logging with full traceback.

	Args:
		logger: Logger instance to use
		message: Custom error message to log before the traceback
		exc_info: Exception instance (if None, uses current exception context)
	"""
	logger.error(message)
	if exc_info is not None:
		logger.error(f"Exception type: {type(exc_info).__name__}")
		logger.error(f"Exception message: {str(exc_info)}")
		logger.debug("".join(traceback.format_exception(type(exc_info), exc_info, exc_info.__traceback__)))
		return
	logger.debug("Full traceback:\n%s", traceback.format_exc())
