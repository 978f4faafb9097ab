import logging
import traceback
from typing import Optional

DEFAULT_FORMAT = '%(asctime)s - %(levelname)s - %(name)s - %(message)s'


def setup_logging(level: Optional[int] = None, fmt: Optional[str] = None) -> None:
	"""Configure root logging once.

	Later calls leave handlers and format alone and only apply level, so an
	entry point can raise or lower verbosity after modules grabbed loggers.
	"""
	root = logging.getLogger()
	if root.handlers:
		if level is not None:
			root.setLevel(level)
		return
	logging.basicConfig(level=logging.INFO if level is None else level, format=fmt or DEFAULT_FORMAT)


def level_from_name(name: Optional[str]) -> int:
	"""Translate a level name such as 'debug' into a logging level, defaulting to INFO."""
	if not name:
		return logging.INFO
	level = logging.getLevelName(str(name).upper())
	return level if isinstance(level, int) else logging.INFO


def get_logger(name: Optional[str] = None) -> logging.Logger:
	"""Return a module logger, configuring logging on first use."""
	setup_logging()
	return logging.getLogger(name or 'imagecopy')


def log_exception(logger: logging.Logger, message: str = "An error occurred", exc_info: Exception = None) -> None:
	"""Log message followed by the exception type, text and full traceback.

	Args:
		logger: Logger instance to use
		message: Error message logged before the traceback
		exc_info: Exception instance (if None, uses current exception context)
	"""
	logger.error(message)
	if exc_info is not None:
		logger.error(f"Exception type: {type(exc_info).__name__}: {exc_info}")
	logger.error("Full traceback:")
	logger.error(traceback.format_exc())
