"""Job lifecycle for one instruction within one orchestration run.

State machine:
    PENDING -> GENERATING -> SAVING -> DONE
    PENDING | GENERATING | SAVING -> ERROR

Transitions only move forward. `Job.reset` (ERROR -> PENDING) exists for the
explicit regenerate command and is never called by automatic processing.
"""

from dataclasses import dataclass, replace
from enum import Enum

from inline_imagegen.parsing.models import Instruction
from inline_imagegen.persistence.writer import Outcome
from inline_imagegen.view.rendered_view import ViewHandle


class JobState(str, Enum):
    PENDING = "pending"
    GENERATING = "generating"
    SAVING = "saving"
    DONE = "done"
    ERROR = "error"


_TRANSITIONS = {
    JobState.PENDING: {JobState.GENERATING, JobState.ERROR},
    JobState.GENERATING: {JobState.SAVING, JobState.ERROR},
    JobState.SAVING: {JobState.DONE, JobState.ERROR},
    JobState.DONE: set(),
    JobState.ERROR: set(),
}


class InvalidTransition(ValueError):
    pass


@dataclass(eq=False)
class Job:
    """Mutable lifecycle record; identity-compared."""

    instruction: Instruction
    state: JobState = JobState.PENDING
    attempts: int = 0
    last_error: str | None = None
    resource: str | None = None
    handle: ViewHandle | None = None

    @property
    def settled(self) -> bool:
        return self.state in (JobState.DONE, JobState.ERROR)

    def advance(self, state: JobState) -> None:
        if state not in _TRANSITIONS[self.state]:
            raise InvalidTransition(f"{self.state.value} -> {state.value}")
        self.state = state

    def complete(self, resource: str) -> None:
        self.resource = resource
        self.advance(JobState.DONE)

    def fail(self, error: str) -> None:
        self.last_error = error
        self.advance(JobState.ERROR)

    def reset(self, instruction: Instruction | None = None) -> None:
        """Return a failed job to PENDING for an explicit regenerate request.

        Args:
            instruction: The same instruction relocated in the current log text.
        """
        if self.state is not JobState.ERROR:
            raise InvalidTransition(f"{self.state.value} -> {JobState.PENDING.value}")
        self.state = JobState.PENDING
        self.attempts = 0
        self.last_error = None
        self.resource = None
        self.handle = None
        if instruction is not None:
            self.instruction = instruction

    def outcome(self) -> Outcome:
        if self.state is JobState.DONE:
            return Outcome.done(self.resource)
        if self.state is JobState.ERROR:
            return Outcome.failed(self.last_error or "generation failed")
        raise InvalidTransition(f"Job in state {self.state.value} has no outcome")

    def relocated(self, span: tuple[int, int], source: str) -> Instruction:
        """Copy of this job's instruction pointing at a new location."""
        return replace(self.instruction, span=span, source=source)
