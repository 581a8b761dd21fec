"""Background workers: the generation pool and the janitor."""

from mist.workers.generation_worker import GenerationWorkerPool
from mist.workers.janitor import run_janitor, sweep_stale_requests

__all__ = ["GenerationWorkerPool", "run_janitor", "sweep_stale_requests"]
