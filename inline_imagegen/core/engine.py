"""Generation orchestration: parse -> resolve -> generate -> persist.

Architectural role:
    Provides the execution pipeline used by the API/CLI adapters (or a host
    chat application) to turn one message's embedded image instructions into
    generated artifacts and a durably rewritten message.

Control-flow model:
    1. The processing guard admits the message id or rejects the trigger.
    2. The parser returns the instructions needing work.
    3. Configuration is validated; a `ConfigurationError` aborts here, before
       any job starts or anything is mutated.
    4. The resolver binds each instruction to a view node (a miss appends a
       detached placeholder) and a loading placeholder is shown.
    5. All jobs run concurrently. Each job generates with bounded retry and
       exponential backoff, stores the artifact, and on settlement contributes
       its edit to the persisted log.
    6. After every job settles the log is saved once and the view is rebuilt
       from the saved text.

Retry behavior:
    `max_retries` extra attempts (default 0) with `retry_delay * 2**k` seconds
    between attempt k and k+1. Only `TransientProviderError` is retried.

Error handling strategy:
    Provider and persistence failures end their own job in ERROR; unexpected
    exceptions inside a job are logged and do the same. The join over all jobs
    always completes, so one failing instruction never blocks its siblings.

Side effects:
    - Writes artifacts through the artifact store.
    - Saves the message text through the message store.
    - Replaces `views[message_id]` with a view rebuilt from the saved log.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

from inline_imagegen.core.errors import ImageGenError, ProviderError, ResolutionMiss
from inline_imagegen.core.jobs import Job, JobState
from inline_imagegen.core.ledger import ProcessingGuard
from inline_imagegen.image.models import GenerationOptions, GeneratedImage
from inline_imagegen.image.provider_config import ImageGenConfig
from inline_imagegen.image.service import ImageGenerationService
from inline_imagegen.parsing.instruction_parser import InstructionParser
from inline_imagegen.parsing.models import GrammarKind, ParseMode, ResourceState, TagSyntax
from inline_imagegen.persistence.artifact_store import ArtifactStore
from inline_imagegen.persistence.message_store import Message, MessageStore
from inline_imagegen.persistence.writer import PersistedLog, apply_result, render_outcome
from inline_imagegen.view.rendered_view import RenderedView
from inline_imagegen.view.resolver import TargetResolver


logger = logging.getLogger(__name__)

StatusListener = Callable[[str, Job, str], None]


@dataclass
class RunReport:
    """Outcome of one orchestration run."""

    message_id: str
    jobs: list[Job]
    text: str

    @property
    def done(self) -> list[Job]:
        return [job for job in self.jobs if job.state is JobState.DONE]

    @property
    def failed(self) -> list[Job]:
        return [job for job in self.jobs if job.state is JobState.ERROR]


class GenerationEngine:
    """Per-message orchestrator.

    Args:
        config: Provider configuration and retry policy.
        service: Provider adapter.
        store: Message log store.
        artifacts: Durable artifact store.
        parser: Instruction parser; built from `syntax` when omitted.
        resolver: View resolver; built from `syntax` when omitted.
        guard: Processing guard; share one per engine process.
        syntax: Tag syntax shared by parser, resolver and writer.
        listener: Optional callback receiving `(message_id, job, status)`.
        sleep: Backoff sleep, replaceable in tests.
    """

    def __init__(
        self,
        config: ImageGenConfig,
        service: ImageGenerationService,
        store: MessageStore,
        artifacts: ArtifactStore,
        parser: InstructionParser | None = None,
        resolver: TargetResolver | None = None,
        guard: ProcessingGuard | None = None,
        syntax: TagSyntax | None = None,
        listener: StatusListener | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.config = config
        self.service = service
        self.store = store
        self.artifacts = artifacts
        self.syntax = syntax or TagSyntax()
        self.parser = parser or InstructionParser(self.syntax)
        self.resolver = resolver or TargetResolver(self.syntax)
        self.guard = guard or ProcessingGuard()
        self.listener = listener
        self._sleep = sleep
        self.views: dict[str, RenderedView] = {}

    def view(self, message_id: str) -> RenderedView | None:
        return self.views.get(message_id)

    async def process_message(
        self, message_id: str, mode: ParseMode = ParseMode.NORMAL
    ) -> RunReport | None:
        """Generate every pending instruction of a message.

        Returns:
            The run report, or `None` when the trigger was ignored (disabled,
            already processing, unknown or user-authored message).

        Raises:
            ConfigurationError: Instructions exist but no request could succeed.
        """
        if not self.config.enabled:
            return None
        if not self.guard.try_acquire(message_id):
            logger.info("Message %s is already being processed; trigger ignored", message_id)
            return None

        try:
            message = await self._load(message_id)
            if message is None:
                return None
            instructions = await self.parser.parse(message.text, mode)
            if not instructions:
                return RunReport(message_id, [], message.text)

            logger.info("Found %d image tag(s) in message %s", len(instructions), message_id)
            return await self._run(message, [Job(item) for item in instructions])
        finally:
            self.guard.release(message_id)

    async def regenerate(self, message_id: str, failed_only: bool = True) -> RunReport | None:
        """Explicit user-requested regeneration.

        Args:
            message_id: Message to regenerate.
            failed_only: Only instructions whose last attempt failed. When
                `False`, every attribute-grammar tag is regenerated as well.
        """
        if not self.guard.try_acquire(message_id):
            logger.info("Message %s is already being processed; regenerate ignored", message_id)
            return None

        try:
            message = await self._load(message_id)
            if message is None:
                return None
            self.config.validate()

            scanned = await self.parser.parse(message.text, ParseMode.FORCE_ALL)
            jobs = [
                Job(item)
                for item in scanned
                if not failed_only or item.resource_state is ResourceState.ERROR
            ]
            jobs.extend(self._relocate_failed_legacy(message, jobs))
            if not jobs:
                return RunReport(message_id, [], message.text)

            jobs.sort(key=lambda job: job.instruction.span[0])
            return await self._run(message, jobs)
        finally:
            self.guard.release(message_id)

    async def _load(self, message_id: str) -> Message | None:
        message = await self.store.load(message_id)
        if message is None:
            logger.warning("Message %s not found", message_id)
            return None
        if message.is_user:
            return None
        return message

    def _relocate_failed_legacy(self, message: Message, taken: list[Job]) -> list[Job]:
        """Find failed legacy jobs of earlier runs by their error sentinel."""
        used = [job.instruction.span for job in taken]
        relocated = []
        for job in self.guard.failed_jobs(message.message_id):
            if job.instruction.kind is not GrammarKind.LEGACY:
                continue
            sentinel = render_outcome(job.instruction, job.outcome(), self.syntax)
            start = message.text.find(sentinel)
            while start != -1 and any(s <= start < e for s, e in used):
                start = message.text.find(sentinel, start + 1)
            if start == -1:
                continue
            span = (start, start + len(sentinel))
            job.reset(job.relocated(span, sentinel))
            used.append(span)
            relocated.append(job)
        return relocated

    async def _run(self, message: Message, jobs: list[Job]) -> RunReport:
        self.config.validate()
        message_id = message.message_id

        view = RenderedView.from_log(message.text)
        self.views[message_id] = view
        claimed = []
        for job in jobs:
            try:
                job.handle = self.resolver.require(job.instruction, view, claimed)
            except ResolutionMiss:
                job.handle = view.append_placeholder()
            claimed.append(job.handle)
            view.show_loading(job.handle, "Generating image...")
        self.guard.attach(message_id, jobs)

        try:
            references = await self.service.collect_references()
        except Exception:
            logger.exception("Collecting reference images for message %s failed", message_id)
            references = []
        log = PersistedLog(message.text)

        async def settle(job: Job) -> None:
            nonlocal log
            await self._run_job(message, job, view, references)
            log = apply_result(log, job.instruction, job.outcome(), self.syntax)

        await asyncio.gather(*(settle(job) for job in jobs))

        text = log.text
        await self.store.save(message_id, text)
        self.views[message_id] = RenderedView.from_log(text)

        report = RunReport(message_id, jobs, text)
        logger.info(
            "Message %s settled: %d done, %d failed",
            message_id,
            len(report.done),
            len(report.failed),
        )
        return report

    async def _run_job(
        self, message: Message, job: Job, view: RenderedView, references: list[str]
    ) -> None:
        try:
            job.advance(JobState.GENERATING)
            image = await self._generate_with_retry(message.message_id, job, view, references)

            job.advance(JobState.SAVING)
            self._status(message.message_id, job, view, "Saving...")
            resource = await self.artifacts.save(image, message.character_name)

            job.complete(resource)
            view.show_image(job.handle, resource, job.instruction.prompt, job.instruction.style)
            self._status(message.message_id, job, view, "Done")
        except ImageGenError as exc:
            logger.error("Image generation failed for %s: %s", job.instruction.span, exc)
            self._fail(message.message_id, job, view, str(exc))
        except Exception as exc:
            logger.exception("Unexpected failure for instruction at %s", job.instruction.span)
            self._fail(message.message_id, job, view, f"Unexpected error: {exc}")

    async def _generate_with_retry(
        self, message_id: str, job: Job, view: RenderedView, references: list[str]
    ) -> GeneratedImage:
        instruction = job.instruction
        options = GenerationOptions(
            aspect_ratio=instruction.aspect_ratio,
            image_size=instruction.image_size,
            quality=instruction.quality,
        )
        max_retries = self.config.max_retries
        attempts = max_retries + 1

        for attempt in range(attempts):
            job.attempts = attempt + 1
            status = "Generating..." if attempt == 0 else f"Generating (retry {attempt}/{max_retries})..."
            self._status(message_id, job, view, status)
            try:
                return await self.service.generate(
                    instruction.prompt, instruction.style, references, options
                )
            except ProviderError as exc:
                job.last_error = str(exc)
                logger.warning(
                    "Generation attempt %d/%d failed: %s", attempt + 1, attempts, exc
                )
                if not exc.retryable or attempt == attempts - 1:
                    raise
                delay = self._backoff(attempt)
                self._status(message_id, job, view, f"Retrying in {delay:g}s...")
                await self._sleep(delay)

        raise ProviderError("Generation failed without error details")

    def _backoff(self, attempt: int) -> float:
        """Compute exponential backoff delay for a retry attempt."""
        return self.config.retry_delay * (2 ** attempt)

    def _status(self, message_id: str, job: Job, view: RenderedView, status: str) -> None:
        view.set_status(job.handle, status)
        if self.listener is not None:
            self.listener(message_id, job, status)

    def _fail(self, message_id: str, job: Job, view: RenderedView, error: str) -> None:
        if job.settled:
            return
        job.fail(error)
        view.show_error(job.handle, error)
        if self.listener is not None:
            self.listener(message_id, job, f"Error: {error}")
