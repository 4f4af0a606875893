"""
Shared utilities: logging setup, environment helpers, small formatting helpers.
"""
from __future__ import annotations

import logging
import os
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Mapping

# -----------------------------------------------------------------------------
# Logging
# -----------------------------------------------------------------------------

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(
    level: str | int = "INFO",
    log_file: str | Path | None = None,
    format_string: str = LOG_FORMAT,
    date_format: str = LOG_DATE_FORMAT,
) -> None:
    """Configure root logger and optional file handler."""
    log_level = getattr(logging, level.upper(), logging.INFO) if isinstance(level, str) else level
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path, encoding="utf-8"))
    logging.basicConfig(
        level=log_level,
        format=format_string,
        datefmt=date_format,
        handlers=handlers,
        force=True,
    )


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


@contextmanager
def timed_stage(logger: logging.Logger, stage: str) -> Iterator[None]:
    """Log how long a scrape stage took, as a debug record with a duration_ms field."""
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = (time.perf_counter() - start) * 1000.0
        logger.debug(
            "stage %s finished in %.1f ms",
            stage,
            elapsed_ms,
            extra={"stage": stage, "duration_ms": elapsed_ms},
        )


# -----------------------------------------------------------------------------
# Config / env helpers
# -----------------------------------------------------------------------------

def env_bool(key: str, default: bool = False, environ: Mapping[str, str] | None = None) -> bool:
    v = (os.environ if environ is None else environ).get(key, "").strip().lower()
    if v in ("1", "true", "yes", "on"):
        return True
    if v in ("0", "false", "no", "off"):
        return False
    return default


def env_int(key: str, default: int = 0, environ: Mapping[str, str] | None = None) -> int:
    try:
        return int((os.environ if environ is None else environ).get(key, default))
    except ValueError:
        return default


def env_float(key: str, default: float = 0.0, environ: Mapping[str, str] | None = None) -> float:
    try:
        return float((os.environ if environ is None else environ).get(key, default))
    except ValueError:
        return default


def env_str(key: str, default: str = "", environ: Mapping[str, str] | None = None) -> str:
    return (os.environ if environ is None else environ).get(key, default).strip()


# -----------------------------------------------------------------------------
# Formatting
# -----------------------------------------------------------------------------

def ordinal(n: int) -> str:
    """English ordinal for a 1-based position (1st, 2nd, 3rd, 4th, 11th, 22nd)."""
    if 10 <= n % 100 <= 20:
        suffix = "th"
    else:
        suffix = {1: "st", 2: "nd", 3: "rd"}.get(n % 10, "th")
    return f"{n}{suffix}"


def redact_dsn(dsn: str) -> str:
    """Hide the password part of a postgres:// URL for logging."""
    if "://" not in dsn or "@" not in dsn:
        return dsn
    scheme, rest = dsn.split("://", 1)
    userinfo, host = rest.rsplit("@", 1)
    if ":" in userinfo:
        userinfo = userinfo.split(":", 1)[0] + ":***"
    return f"{scheme}://{userinfo}@{host}"
