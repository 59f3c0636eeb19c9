"""
Execution of extraction jobs, serially or on a worker pool.

Small batches (or batches with force_serial) run on the calling process. Larger
batches are spread over a ProcessPoolExecutor (or ThreadPoolExecutor) of
`workers` workers; jobs complete in any order and are inserted into a
ResultCollector keyed by ROI name, so completion order never shows in the
output.

The pool lives in a `with` block and is shut down on every exit path. With a
timeout, jobs that have not finished when it elapses are cancelled and never
inserted.
"""

from __future__ import annotations

import os
import sys
import time
from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor, TimeoutError, as_completed
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Sequence

from .clip import StreamFilter
from .collector import ResultCollector
from .errors import TileReadError
from .extractor import QueryResult, extract
from .reader import PointSet
from .shapes import ResolvedQuery


ProgressSink = Callable[[int, int], None]


@dataclass(frozen=True)
class SchedulerConfig:
    workers: Optional[int] = 4
    force_serial: bool = False
    serial_threshold: int = 2
    executor: str = "process"
    timeout: Optional[float] = None
    progress: bool = False
    verbose: bool = False

    def __post_init__(self):
        if self.executor not in ("process", "thread"):
            raise ValueError(f"executor must be 'process' or 'thread', got {self.executor!r}")
        if self.workers is not None and self.workers < 1:
            raise ValueError(f"workers must be >= 1, got {self.workers}")

    @classmethod
    def from_params(cls, params: Dict[str, Any], **overrides) -> "SchedulerConfig":
        """Build a config from a QUERY_PARAMS-style dictionary."""
        fields = {
            "workers": params.get("workers", 4),
            "force_serial": params.get("force_serial", False),
            "serial_threshold": params.get("serial_threshold", 2),
            "executor": params.get("executor", "process"),
            "timeout": params.get("timeout"),
            "progress": params.get("progress", False),
            "verbose": params.get("verbose", False),
        }
        fields.update(overrides)
        return cls(**fields)

    @property
    def pool_size(self) -> int:
        return self.workers if self.workers is not None else (os.cpu_count() or 1)


def console_progress(current: int, total: int) -> None:
    """Default progress sink: one line per completed query."""
    pct = current * 100.0 / total if total else 100.0
    print(f"  Progress: {current:,}/{total:,} ({pct:.1f}%)", flush=True)


def _extract_job(args):
    """
    Wrapper for extract() to make it pickleable for ProcessPoolExecutor.

    Args:
        args: Tuple of (resolved_query, reader, stream_filter)
    """
    resolved, reader, stream_filter = args
    return extract(resolved, reader, stream_filter)


def _failed_job(resolved: ResolvedQuery, exc: BaseException) -> QueryResult:
    reason = f"worker failed: {type(exc).__name__}: {exc}"
    return QueryResult(
        name=resolved.name,
        points=PointSet.empty(),
        query=resolved.query,
        tiles=tuple(t.path for t in resolved.tiles),
        errors=[TileReadError(t.path, reason) for t in resolved.tiles],
    )


class Scheduler:
    """
    Runs extraction jobs and fills a ResultCollector.

    Args:
        config: Execution options (parallelism, serial threshold, timeout, ...)
        progress: Optional advance(current, total) callback. When omitted and
            config.progress is set, console_progress is used.
    """

    def __init__(self, config: Optional[SchedulerConfig] = None, progress: Optional[ProgressSink] = None):
        self.config = config or SchedulerConfig()
        if progress is None and self.config.progress:
            progress = console_progress
        self.progress = progress

    def use_serial(self, n_jobs: int) -> bool:
        return (
            self.config.force_serial
            or n_jobs <= self.config.serial_threshold
            or self.config.pool_size == 1
        )

    def run(
        self,
        jobs: Sequence[ResolvedQuery],
        reader=None,
        stream_filter: Optional[StreamFilter] = None,
        collector: Optional[ResultCollector] = None,
    ) -> Dict[str, QueryResult]:
        """
        Execute every job and return the name -> result mapping.

        Jobs that were cancelled by the timeout have no entry.
        """
        jobs = list(jobs)
        if collector is None:
            collector = ResultCollector()
        if not jobs:
            return collector.snapshot()

        if self.use_serial(len(jobs)):
            if self.config.verbose:
                print(f"[scheduler] running {len(jobs)} queries serially", file=sys.stderr, flush=True)
            self._run_serial(jobs, reader, stream_filter, collector)
        else:
            self._run_pool(jobs, reader, stream_filter, collector)

        return collector.snapshot()

    def _advance(self, current: int, total: int) -> None:
        if self.progress is None:
            return
        try:
            self.progress(current, total)
        except Exception as e:
            print(f"[scheduler] progress callback failed: {e}", file=sys.stderr, flush=True)

    def _run_serial(self, jobs, reader, stream_filter, collector: ResultCollector) -> None:
        deadline = None
        if self.config.timeout is not None:
            deadline = time.monotonic() + self.config.timeout

        for idx, resolved in enumerate(jobs):
            if deadline is not None and time.monotonic() >= deadline:
                print(
                    f"[scheduler] timeout after {self.config.timeout}s, "
                    f"{len(jobs) - idx} queries not started",
                    file=sys.stderr,
                    flush=True,
                )
                break
            collector.add(extract(resolved, reader, stream_filter))
            self._advance(idx + 1, len(jobs))

    def _run_pool(self, jobs, reader, stream_filter, collector: ResultCollector) -> None:
        total = len(jobs)
        num_workers = min(self.config.pool_size, total)
        executor_cls = ProcessPoolExecutor if self.config.executor == "process" else ThreadPoolExecutor

        if self.config.verbose:
            print(
                f"[scheduler] running {total} queries on {num_workers} workers ({self.config.executor} pool)",
                file=sys.stderr,
                flush=True,
            )

        done = 0
        with executor_cls(max_workers=num_workers) as executor:
            futures = {
                executor.submit(_extract_job, (resolved, reader, stream_filter)): resolved
                for resolved in jobs
            }
            try:
                for future in as_completed(futures, timeout=self.config.timeout):
                    resolved = futures[future]
                    try:
                        result = future.result()
                    except Exception as e:
                        print(f"  ✗ {resolved.name}: worker failed: {e}", file=sys.stderr, flush=True)
                        result = _failed_job(resolved, e)
                    collector.add(result)
                    done += 1
                    self._advance(done, total)
            except TimeoutError:
                cancelled = sum(1 for f in futures if not f.done() and f.cancel())
                print(
                    f"[scheduler] timeout after {self.config.timeout}s, "
                    f"{total - done} queries dropped ({cancelled} not started)",
                    file=sys.stderr,
                    flush=True,
                )
