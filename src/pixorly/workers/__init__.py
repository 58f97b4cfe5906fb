"""Background workers for async processing tasks."""

from pixorly.workers.generation_worker import (
    WorkerContext,
    process_batch,
    process_generation_job,
    run_generation_worker,
)

__all__ = [
    "WorkerContext",
    "process_batch",
    "process_generation_job",
    "run_generation_worker",
]
