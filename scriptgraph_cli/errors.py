"""Exceptions raised by the analysis engine."""

from __future__ import annotations


class ScriptGraphError(Exception):
    """Base class for errors that abort an analysis run."""


class AnalysisError(ScriptGraphError):
    """The target directory is missing or unreadable."""


class AnalysisCancelled(ScriptGraphError):
    """The caller cancelled the run between files."""


class ConfigError(ScriptGraphError):
    """A configuration value is invalid."""
