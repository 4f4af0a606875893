"""
PgBouncer process collector: CPU, memory and file descriptors of the process
named by a pid file, read with psutil.
"""
from __future__ import annotations

from pathlib import Path

import psutil

from collectors.base import BaseCollector, CollectorResult, Queryable, Sink
from descriptors import metric_name
from models import MetricDesc, MetricKind, Sample


class ProcessCollector(BaseCollector):
    name = "process"

    def __init__(self, namespace: str, pid_file: str | Path) -> None:
        super().__init__(namespace)
        self.pid_file = Path(pid_file)

        def desc(suffix: str, doc: str, kind: MetricKind = MetricKind.GAUGE) -> MetricDesc:
            return MetricDesc(metric_name(namespace, "process", suffix), doc, kind)

        self.cpu = desc("cpu_seconds_total", "Total user and system CPU time spent in seconds.", MetricKind.COUNTER)
        self.rss = desc("resident_memory_bytes", "Resident memory size in bytes.")
        self.vms = desc("virtual_memory_bytes", "Virtual memory size in bytes.")
        self.open_fds = desc("open_fds", "Number of open file descriptors.")
        self.max_fds = desc("max_fds", "Maximum number of open file descriptors.")
        self.start_time = desc("start_time_seconds", "Start time of the process since unix epoch in seconds.")

    def read_pid(self) -> int:
        return int(self.pid_file.read_text(encoding="utf-8").strip())

    def collect(self, sink: Sink, conn: Queryable | None = None) -> CollectorResult:
        proc = psutil.Process(self.read_pid())
        with proc.oneshot():
            cpu = proc.cpu_times()
            mem = proc.memory_info()
            sink(Sample(self.cpu, float(cpu.user + cpu.system)))
            sink(Sample(self.rss, float(mem.rss)))
            sink(Sample(self.vms, float(mem.vms)))
            sink(Sample(self.start_time, float(proc.create_time())))
            try:
                sink(Sample(self.open_fds, float(proc.num_fds())))
            except (AttributeError, psutil.AccessDenied):
                pass
            try:
                soft, _hard = proc.rlimit(psutil.RLIMIT_NOFILE)
                sink(Sample(self.max_fds, float(soft)))
            except (AttributeError, psutil.AccessDenied):
                pass
        return CollectorResult(success=True, data={"pid": proc.pid})
