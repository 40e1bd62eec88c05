"""Bounded pool that runs the external converters for a batch of jobs.

Jobs are handed to a fixed number of worker threads in submission (FIFO)
order. Outcomes are yielded in completion order, each carrying its
sequence_index so the caller can still report "k/N". Workers never touch the
state store: the single consumer of `run()` applies every outcome.

There is no cancellation; a converter that hangs blocks its worker until the
optional per-tool timeout fires.
"""

import concurrent.futures
import logging
import os
import threading
import time
from pathlib import Path
from typing import Iterator, Optional, Protocol, Sequence
from cti.config.models import DEFAULT_MAX_WORKERS
from cti.domain.models import ConversionJob, ConversionOutcome


class Converter(Protocol):
    def convert(self, input_path: Path) -> Path:
        ...


def resolve_worker_count(
    configured: int,
    job_count: int,
    cpu_count: Optional[int] = None,
    cap: int = DEFAULT_MAX_WORKERS,
) -> int:
    """An explicit setting wins; auto mode uses the core count capped at `cap`. Never more than job_count."""
    if configured > 0:
        workers = configured
    else:
        workers = min(cpu_count or os.cpu_count() or 1, cap)
    return max(1, min(workers, job_count))


class WorkerPool:
    """Runs conversion jobs on at most `worker_count` threads."""

    def __init__(self, converter: Converter, normalizer: Optional[Converter] = None, workers: int = 0):
        self.converter = converter
        self.normalizer = normalizer
        self.configured_workers = workers
        self.worker_count = 0
        self.logger = logging.getLogger(__name__)

    def _process_job(self, job: ConversionJob) -> ConversionOutcome:
        source = job.source_file
        start = time.monotonic()
        thread_name = threading.current_thread().name
        self.logger.debug(f"JOB_START: [{job.sequence_index}] {source.name} ({thread_name})")

        intermediate: Optional[Path] = None
        input_path = source.path
        try:
            if self.normalizer is not None:
                try:
                    intermediate = self.normalizer.convert(source.path)
                except Exception as e:
                    return ConversionOutcome(
                        sequence_index=job.sequence_index,
                        source_file=source,
                        elapsed=time.monotonic() - start,
                        error=f"DNG conversion failed: {e}",
                    )
                input_path = intermediate

            output_path = self.converter.convert(input_path)
        except Exception as e:
            self.logger.debug(f"JOB_FAILED: [{job.sequence_index}] {source.name}: {e}")
            return ConversionOutcome(
                sequence_index=job.sequence_index,
                source_file=source,
                intermediate_path=intermediate,
                elapsed=time.monotonic() - start,
                error=str(e),
            )

        elapsed = time.monotonic() - start
        self.logger.debug(f"JOB_END: [{job.sequence_index}] {source.name} in {elapsed:.2f}s")
        return ConversionOutcome(
            sequence_index=job.sequence_index,
            source_file=source,
            output_path=output_path,
            intermediate_path=intermediate,
            elapsed=elapsed,
        )

    def run(self, jobs: Sequence[ConversionJob]) -> Iterator[ConversionOutcome]:
        """Yields one outcome per job, in completion order."""
        jobs = list(jobs)
        if not jobs:
            return

        self.worker_count = resolve_worker_count(self.configured_workers, len(jobs))
        self.logger.info(f"Worker pool: {len(jobs)} jobs on {self.worker_count} workers")

        with concurrent.futures.ThreadPoolExecutor(
            max_workers=self.worker_count,
            thread_name_prefix="cti-worker",
        ) as executor:
            futures = [executor.submit(self._process_job, job) for job in jobs]
            for future in concurrent.futures.as_completed(futures):
                yield future.result()
