"""Processing guard and per-message job ledger.

Concurrency model:
    Everything runs on one asyncio event loop, so plain dict updates between
    await points are atomic. The guard is advisory: it prevents re-entrant
    orchestration of the same message id, nothing more.

Behavior:
    - `try_acquire` admits a message id only when no run holds it; a second
      trigger is rejected, never queued.
    - Jobs attached to an active run are visible through `active_jobs`.
    - `release` moves the run's jobs into history, where the regenerate
      command finds failed ones.
"""

from inline_imagegen.core.jobs import Job, JobState


class ProcessingGuard:
    """Job ledger keyed by message id."""

    def __init__(self) -> None:
        self._active: dict[str, list[Job]] = {}
        self._history: dict[str, list[Job]] = {}

    def try_acquire(self, message_id: str) -> bool:
        if message_id in self._active:
            return False
        self._active[message_id] = []
        return True

    def is_active(self, message_id: str) -> bool:
        return message_id in self._active

    def attach(self, message_id: str, jobs: list[Job]) -> None:
        if message_id not in self._active:
            raise KeyError(f"No active run for message {message_id}")
        self._active[message_id] = list(jobs)

    def active_jobs(self, message_id: str) -> list[Job]:
        return list(self._active.get(message_id, []))

    def release(self, message_id: str) -> None:
        jobs = self._active.pop(message_id, None)
        if jobs:
            self._history[message_id] = jobs

    def failed_jobs(self, message_id: str) -> list[Job]:
        return [job for job in self._history.get(message_id, []) if job.state is JobState.ERROR]
