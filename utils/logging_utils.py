"""
Logging setup shared by the API process, the prefetch worker threads and tests.

Usage
-----
At process start (``run_server.py`` or the FastAPI lifespan):

    from utils.logging_utils import setup_logging

    setup_logging(level="INFO", job_name="parcel-insight")

Inside a module:

    from utils.logging_utils import get_tagged_logger

    logger = get_tagged_logger(__name__, tag="amenity_service")
    logger.info("Fetched amenities", extra={"category": "healthcare", "count": 12})

Every record carries ``job_name`` and ``tag`` fields so lines emitted by the
background prefetch loop can be told apart from request handling.
"""

from __future__ import annotations

import logging
import logging.config
import time
from contextlib import contextmanager
from typing import Any, Iterator, Mapping, MutableMapping, Optional
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse


# Early records (before setup_logging) still get a timestamp and level.
BOOTSTRAP_FORMAT = "%(asctime)s | %(levelname)s | %(message)s"
BOOTSTRAP_DATEFMT = "%Y-%m-%d %H:%M:%S"

logging.basicConfig(
    level=logging.INFO,
    format=BOOTSTRAP_FORMAT,
    datefmt=BOOTSTRAP_DATEFMT,
)


DEFAULT_LOG_FORMAT = (
    "%(asctime)s | %(levelname)s | %(job_name)s | %(threadName)s | %(tag)s | %(name)s | %(message)s"
)
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_SENSITIVE_QUERY_TOKENS = ("pass", "pwd", "secret", "token", "key")

_CONFIGURED: bool = False


class MaxLevelFilter(logging.Filter):
    """Pass only records at or below ``max_level`` (keeps WARNING+ off stdout)."""

    def __init__(self, max_level: int) -> None:
        super().__init__()
        self.max_level = max_level

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        return record.levelno <= self.max_level


class EnsureTagFilter(logging.Filter):
    """
    Guarantee a ``tag`` attribute on every record.

    Records coming from a tagged adapter keep their tag; plain loggers (third
    party libraries such as urllib3 or uvicorn) get the last segment of their
    logger name, e.g. ``"urllib3.connectionpool"`` -> ``"connectionpool"``.
    """

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        if not hasattr(record, "tag"):
            logger_name = getattr(record, "name", "")
            record.tag = logger_name.split(".")[-1] if logger_name else "-"
        return True


class JobNameFilter(logging.Filter):
    """Stamp a fixed ``job_name`` on every record that does not already carry one."""

    def __init__(self, job_name: Optional[str] = None) -> None:
        super().__init__()
        self._job_name = job_name or "-"

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        if not hasattr(record, "job_name"):
            record.job_name = self._job_name
        return True


def build_logging_config(
    *,
    level: str | int = "INFO",
    log_format: str = DEFAULT_LOG_FORMAT,
    date_format: str = DEFAULT_DATE_FORMAT,
    job_name: Optional[str] = None,
    quiet_loggers: tuple[str, ...] = ("urllib3", "requests_cache"),
) -> Mapping[str, Any]:
    """
    Build a ``logging.config.dictConfig`` mapping.

    Parameters
    ----------
    level:
        Root logger level.
    log_format, date_format:
        Formatter patterns.
    job_name:
        Logical process name written into ``%(job_name)s``.
    quiet_loggers:
        Chatty library loggers pinned to WARNING so per-request HTTP
        connection lines do not drown the pipeline logs.
    """
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "ensure_tag": {"()": EnsureTagFilter},
            "job_name": {"()": JobNameFilter, "job_name": job_name},
            "stdout_max_info": {
                "()": MaxLevelFilter,
                "max_level": logging.INFO,
            },
        },
        "formatters": {
            "standard": {
                "format": log_format,
                "datefmt": date_format,
            },
        },
        "handlers": {
            "stdout": {
                "class": "logging.StreamHandler",
                "formatter": "standard",
                "filters": ["ensure_tag", "job_name", "stdout_max_info"],
                "level": "DEBUG",
                "stream": "ext://sys.stdout",
            },
            "stderr": {
                "class": "logging.StreamHandler",
                "formatter": "standard",
                "filters": ["ensure_tag", "job_name"],
                "level": "WARNING",
                "stream": "ext://sys.stderr",
            },
        },
        "loggers": {name: {"level": "WARNING"} for name in quiet_loggers},
        "root": {
            "level": level,
            "handlers": ["stdout", "stderr"],
        },
    }


def setup_logging(
    *,
    level: str | int = "INFO",
    log_format: str = DEFAULT_LOG_FORMAT,
    date_format: str = DEFAULT_DATE_FORMAT,
    job_name: Optional[str] = None,
    override_existing: bool = False,
) -> None:
    """
    Apply the logging configuration once per process.

    Repeated calls are ignored unless ``override_existing`` is True, which lets
    the server entrypoint and the FastAPI lifespan both call it safely.
    """
    global _CONFIGURED

    if _CONFIGURED and not override_existing:
        return

    logging.config.dictConfig(
        build_logging_config(
            level=level,
            log_format=log_format,
            date_format=date_format,
            job_name=job_name,
        )
    )
    _CONFIGURED = True


class TaggedLoggerAdapter(logging.LoggerAdapter):
    """LoggerAdapter that merges per-call ``extra`` fields with the fixed tag."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        kwargs["extra"] = {**self.extra, **(kwargs.get("extra") or {})}
        return msg, kwargs


def get_tagged_logger(
    name: str,
    *,
    tag: Optional[str] = None,
) -> logging.LoggerAdapter:
    """
    Return a LoggerAdapter whose records always carry ``tag``.

    ``tag`` defaults to the last segment of ``name``; ``extra`` passed on a
    call is kept alongside it.
    """
    base_logger = logging.getLogger(name)
    if tag is None:
        tag = name.split(".")[-1]
    return TaggedLoggerAdapter(base_logger, {"tag": tag})


@contextmanager
def log_duration(logger: logging.LoggerAdapter, message: str, **fields: Any) -> Iterator[dict]:
    """
    Log ``message`` at INFO with an ``elapsed_ms`` field once the block exits.

    The yielded dict is merged into the log extras, so callers can attach
    result counts discovered inside the block.
    """
    extra: dict[str, Any] = dict(fields)
    start = time.perf_counter()
    try:
        yield extra
    finally:
        extra["elapsed_ms"] = round((time.perf_counter() - start) * 1000, 1)
        logger.info(message, extra=extra)


def mask_url(url: str) -> str:
    """Return ``url`` with user info and sensitive query values masked.

    Examples
    --------
    - redis://:secret@cache:6379/0 -> redis://:***@cache:6379/0
    - https://overpass-api.de/api/interpreter -> unchanged
    """
    try:
        parsed = urlparse(url)
    except ValueError:
        return url

    query_pairs = []
    for key, value in parse_qsl(parsed.query, keep_blank_values=True):
        if any(token in key.lower() for token in _SENSITIVE_QUERY_TOKENS):
            query_pairs.append((key, "***"))
        else:
            query_pairs.append((key, value))
    masked_query = urlencode(query_pairs)

    netloc = ""
    if parsed.username or parsed.password is not None:
        netloc += "***" if parsed.username else ""
        if parsed.password is not None:
            netloc += ":***"
        netloc += "@"
    if parsed.hostname:
        netloc += parsed.hostname
    if parsed.port:
        netloc += f":{parsed.port}"
    if not netloc:
        netloc = parsed.netloc

    return urlunparse(
        (parsed.scheme, netloc, parsed.path or "", parsed.params or "", masked_query, parsed.fragment or "")
    )
