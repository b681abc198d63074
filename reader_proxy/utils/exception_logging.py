"""
Logging helpers for proxy failures. None of these raise, even for exception
objects whose __str__ is broken.
"""

import logging


def _safe_str(obj) -> str:
    try:
        return str(obj)
    except Exception:
        try:
            return repr(obj)
        except Exception:
            return f"<{type(obj).__name__} object (string conversion failed)>"


def _sub_exceptions(exception) -> list:
    try:
        return list(getattr(exception, "exceptions", None) or [])
    except Exception:
        return []


def format_exception_message(exception: Exception) -> str:
    """
    Message for an exception, including sub-exceptions of exception groups
    raised from task groups.
    """
    if exception is None:
        return "None"
    main_str = _safe_str(exception)
    subs = _sub_exceptions(exception)
    if not subs:
        return main_str
    joined = "; ".join(f"{type(sub).__name__}: {_safe_str(sub)}" for sub in subs)
    return f"{main_str} (Sub-exceptions: {joined})"


def log_exception_with_details(
    logger: logging.Logger,
    prefix: str,
    exception: Exception,
    level: int = logging.ERROR,
) -> None:
    """
    Log an exception with its traceback; exception groups get one entry per
    sub-exception.

    Args:
        logger: The logger instance to use
        prefix: Prefix for the log message (e.g., "[Proxy]")
        exception: The exception to log
        level: The logging level to use (default: ERROR)
    """
    try:
        subs = _sub_exceptions(exception)
        if not subs:
            logger.log(
                level,
                f"{prefix} Exception: {_safe_str(exception)}",
                exc_info=exception if exception is not None else False,
            )
            return

        logger.log(
            level,
            f"{prefix} Exception with {len(subs)} sub-exceptions: {_safe_str(exception)}",
        )
        for i, sub in enumerate(subs):
            logger.log(
                level,
                f"{prefix} Sub-exception {i+1}: {type(sub).__name__}: {_safe_str(sub)}",
                exc_info=sub,
            )
    except Exception:
        try:
            logger.log(level, f"{prefix} Exception (logging failed)")
        except Exception:
            pass
