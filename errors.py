"""
Exception types shared across the exporter.
"""
from __future__ import annotations


class ExporterError(Exception):
    """Base class for exporter errors."""


class ConnectError(ExporterError):
    """The admin console could not be reached or verified at construction time."""


class QueryError(ExporterError):
    """An introspection query failed; fatal for that result-set in this scrape."""


class ShapeError(QueryError):
    """A result-set came back with a column layout the exporter does not understand."""


class RowError(ExporterError):
    """A single row or column could not be converted; the scrape carries on."""


class RegistryError(ExporterError):
    """A column mapping file is malformed."""
