"""
Collectors package: one collector per PgBouncer admin-console command.
"""
from __future__ import annotations

from collectors.base import BaseCollector, CollectorResult
from collectors.config_collector import ConfigCollector
from collectors.lists_collector import ListsCollector
from collectors.process_collector import ProcessCollector
from collectors.resultset_collector import query_namespace, query_namespaces
from collectors.servers_collector import ServersCollector
from collectors.version_collector import VersionCollector, parse_version

__all__ = [
    "BaseCollector",
    "CollectorResult",
    "ConfigCollector",
    "ListsCollector",
    "ProcessCollector",
    "ServersCollector",
    "VersionCollector",
    "parse_version",
    "query_namespace",
    "query_namespaces",
]
