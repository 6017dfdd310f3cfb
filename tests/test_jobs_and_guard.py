import pytest

from inline_imagegen.core.jobs import InvalidTransition, Job, JobState
from inline_imagegen.core.ledger import ProcessingGuard
from inline_imagegen.parsing.models import GrammarKind, Instruction


def make_job() -> Job:
    return Job(
        Instruction(
            span=(0, 10),
            kind=GrammarKind.LEGACY,
            prompt="a bridge",
            source="[IMG:GEN:]",
            payload="{}",
        )
    )


def test_job_happy_path():
    job = make_job()

    job.advance(JobState.GENERATING)
    job.advance(JobState.SAVING)
    job.complete("/x.png")

    assert job.state is JobState.DONE
    assert job.settled
    assert job.outcome().succeeded
    assert job.outcome().resource == "/x.png"


@pytest.mark.parametrize("state", [JobState.PENDING, JobState.GENERATING, JobState.SAVING])
def test_any_active_state_can_fail(state):
    job = make_job()
    job.state = state

    job.fail("boom")

    assert job.state is JobState.ERROR
    assert job.outcome().error == "boom"


def test_transitions_only_move_forward():
    job = make_job()
    with pytest.raises(InvalidTransition):
        job.advance(JobState.SAVING)

    job.advance(JobState.GENERATING)
    job.advance(JobState.SAVING)
    job.complete("/x.png")
    with pytest.raises(InvalidTransition):
        job.fail("too late")
    with pytest.raises(InvalidTransition):
        job.advance(JobState.GENERATING)


def test_unsettled_job_has_no_outcome():
    with pytest.raises(InvalidTransition):
        make_job().outcome()


def test_reset_is_only_allowed_after_failure():
    job = make_job()
    with pytest.raises(InvalidTransition):
        job.reset()

    job.attempts = 3
    job.fail("boom")
    moved = job.relocated((5, 20), "[IMG:ERROR:boom]")
    job.reset(moved)

    assert job.state is JobState.PENDING
    assert job.attempts == 0
    assert job.last_error is None
    assert job.instruction.span == (5, 20)
    assert job.instruction.prompt == "a bridge"


def test_guard_rejects_second_trigger_until_released():
    guard = ProcessingGuard()

    assert guard.try_acquire("m1")
    assert not guard.try_acquire("m1")
    assert guard.try_acquire("m2")

    guard.release("m1")
    assert not guard.is_active("m1")
    assert guard.try_acquire("m1")


def test_guard_moves_jobs_to_history_on_release():
    guard = ProcessingGuard()
    ok, failed = make_job(), make_job()
    failed.fail("boom")

    guard.try_acquire("m1")
    guard.attach("m1", [ok, failed])
    assert guard.active_jobs("m1") == [ok, failed]

    guard.release("m1")
    assert guard.active_jobs("m1") == []
    assert guard.failed_jobs("m1") == [failed]


def test_attach_requires_an_active_run():
    with pytest.raises(KeyError):
        ProcessingGuard().attach("m1", [])
