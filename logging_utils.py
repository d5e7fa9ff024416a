"""Tagged logging helper shared by every sonicstate component.

Messages render as ``[LEVEL][Tag] message | key=value ...`` so per-tick
diagnostics stay greppable by component tag.
"""
from __future__ import annotations

import logging
from typing import Any

_logger = logging.getLogger("sonicstate")
if not _logger.handlers:
    handler = logging.StreamHandler()
    formatter = logging.Formatter("[%(levelname)s][%(tag)s] %(message)s")
    handler.setFormatter(formatter)
    _logger.addHandler(handler)
    _logger.setLevel(logging.INFO)
    _logger.propagate = False


class _TagAdapter(logging.LoggerAdapter):
    def process(self, msg: Any, kwargs: dict[str, Any]):
        tag = kwargs.pop("tag", "Core")
        kwargs.setdefault("extra", {})["tag"] = tag
        return msg, kwargs


_logger_adapter = _TagAdapter(_logger, {})


def _format_field(value: Any) -> str:
    if isinstance(value, float):
        return f"{value:.4f}"
    return str(value)


def log_event(level: str, tag: str, message: str, **fields: Any) -> None:
    """Emit one sonicstate event, e.g. ``log_event("INFO", "State", "Transition", to_state="peak")``.

    Tags name the emitting stage (Spectrum, Tempo, State, Params, Capture,
    Engine, Config). Float fields render with four decimals. Disabled levels
    return before any formatting, so per-tick DEBUG calls cost one level check.
    """
    level_val = getattr(logging, level.upper(), logging.INFO)
    if not _logger.isEnabledFor(level_val):
        return
    if fields:
        extras = " ".join(f"{k}={_format_field(v)}" for k, v in fields.items())
        message = f"{message} | {extras}"
    _logger_adapter.log(level_val, message, tag=tag)


def set_log_level(level: str) -> None:
    """Apply ``Config.log_level``; unknown names fall back to INFO."""
    level_name = (level or "INFO").upper()
    level_val = getattr(logging, level_name, logging.INFO)
    _logger.setLevel(level_val)


def get_log_level() -> str:
    """Level name currently applied to the sonicstate logger."""
    return logging.getLevelName(_logger.level)
