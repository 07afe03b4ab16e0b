"""Reading fields from the game server configuration file."""

from __future__ import annotations

import logging
import os
from typing import Any, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_CONFIG_PATH = "./server.cfg"


def parse_config_field(
    field: str,
    convert: Callable[[str], T] = str,  # type: ignore[assignment]
    path: "str | os.PathLike[str]" = DEFAULT_CONFIG_PATH,
) -> Optional[T]:
    """Return the value of the first line starting with ``field``.

    The value is the second space-separated word of that line, passed through
    ``convert``. Returns ``None`` if the file cannot be read, no line matches,
    the line has no value, or the conversion fails.
    """
    try:
        with open(path, encoding="utf-8", errors="replace") as handle:
            text = handle.read()
    except OSError:
        return None

    line = next((line for line in text.splitlines() if line.startswith(field)), None)
    if line is None:
        return None

    words = line.split(" ")
    if len(words) < 2:
        return None

    try:
        return convert(words[1])
    except (ValueError, TypeError):
        return None


def handle_result(func: Callable[..., T], *args: Any) -> Optional[T]:
    """Call ``func``; log and swallow any error, returning ``None`` in that case."""
    try:
        return func(*args)
    except Exception as err:  # noqa: BLE001 - errors are reported, not raised
        logger.error("%r", err)
        return None