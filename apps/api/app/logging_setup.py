from __future__ import annotations

import logging
import sys

_APP_LOGGER_PREFIX = "app."


class _NoiseFilter(logging.Filter):
  """Keep our own loggers; let third-party libraries through only at WARNING and above."""

  def filter(self, record: logging.LogRecord) -> bool:
    name = record.name
    if name.startswith(_APP_LOGGER_PREFIX) or name in ("app", "__main__"):
      return True
    if name.startswith("uvicorn"):
      return record.levelno >= logging.INFO
    return record.levelno >= logging.WARNING


def setup_logging(level: str | int = "INFO") -> None:
  """
  Configure the root logger with a single stderr handler.

  Safe to call more than once; existing handlers are replaced.
  """
  if isinstance(level, str):
    level = logging.getLevelName(level.strip().upper())
    if not isinstance(level, int):
      level = logging.INFO

  root = logging.getLogger()
  root.setLevel(level)
  for h in list(root.handlers):
    root.removeHandler(h)

  fmt = logging.Formatter(
    fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
  )
  ch = logging.StreamHandler(sys.stderr)
  ch.setLevel(level)
  ch.setFormatter(fmt)
  ch.addFilter(_NoiseFilter())
  root.addHandler(ch)

  logging.captureWarnings(True)
