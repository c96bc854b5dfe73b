"""Runtime version metadata for the awards tally runtime.

This module is import-safe and exposes authoritative version identifiers for
other runtime modules without executing side effects on import.
"""

from __future__ import annotations

PROJECT_NAME = "Awards Tally Runtime"
VERSION = "v0.1.0"
BUILD = "2026.10"
RESULTS_SCHEMA = "v1"

__all__ = [
    "PROJECT_NAME",
    "VERSION",
    "BUILD",
    "RESULTS_SCHEMA",
    "as_dict",
    "as_string",
]


def as_dict() -> dict[str, str]:
    """Return version metadata as a dictionary."""

    return {
        "project": PROJECT_NAME,
        "version": VERSION,
        "build": BUILD,
        "results_schema": RESULTS_SCHEMA,
    }


def as_string() -> str:
    return f"{PROJECT_NAME} {VERSION} (Build {BUILD})"
