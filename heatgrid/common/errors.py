"""Exceptions raised by the averaging engine."""

from __future__ import annotations


class InvalidQueryError(ValueError):
    """The caller supplied parameters the engine cannot run with."""


class DataSourceError(RuntimeError):
    """Reading from the measurement store failed; the caller may retry."""

    retryable = True
