"""Persistence writer: idempotent, span-local rewriting of the message log.

Architectural role:
    The only component allowed to change the persisted log. Each settled job
    contributes one edit keyed by its instruction's original span; the current
    text is the base text with all edits applied. Re-applying an outcome
    replaces the edit for that span, so the log can never hold two resolved
    values for one instruction.

Encodings:
    - DONE, attribute grammar: the resource attribute value becomes the real
      reference. A `src` attribute is inserted when the tag had none and a
      bare `src` gains a quoted value.
    - DONE, legacy grammar: the tag becomes the bare reference inside an
      `<img src>`, otherwise a markdown image `![prompt](reference)`.
    - ERROR, attribute grammar: the resource attribute points at the fixed
      error resource.
    - ERROR, legacy grammar: the tag becomes `[IMG:ERROR:<message>]` with a
      sanitized message of at most `MAX_ERROR_MESSAGE` characters.
    Every error encoding differs from the pending markers, so later passes do
    not re-trigger the instruction.

Determinism:
    Pure functions over immutable values.
"""

import html
import re
from dataclasses import dataclass

from inline_imagegen.parsing.models import GrammarKind, Instruction, TagSyntax


MAX_ERROR_MESSAGE = 120

_WHITESPACE = re.compile(r"\s+")
_SENTINEL_UNSAFE = re.compile(r"[\[\]\"<>]")


@dataclass(frozen=True)
class Outcome:
    """Result of a settled job as seen by the writer."""

    succeeded: bool
    resource: str | None = None
    error: str | None = None

    @classmethod
    def done(cls, resource: str) -> "Outcome":
        return cls(True, resource=resource)

    @classmethod
    def failed(cls, error: str) -> "Outcome":
        return cls(False, error=error)


@dataclass(frozen=True)
class PersistedLog:
    """Base text plus non-overlapping span edits."""

    base: str
    edits: tuple[tuple[tuple[int, int], str], ...] = ()

    @property
    def text(self) -> str:
        pieces = []
        position = 0
        for (start, end), replacement in self.edits:
            pieces.append(self.base[position:start])
            pieces.append(replacement)
            position = end
        pieces.append(self.base[position:])
        return "".join(pieces)

    def with_edit(self, span: tuple[int, int], replacement: str) -> "PersistedLog":
        start, end = span
        if not 0 <= start <= end <= len(self.base):
            raise ValueError(f"Span {span} is outside the log")
        for other_start, other_end in dict(self.edits):
            if (other_start, other_end) != span and start < other_end and other_start < end:
                raise ValueError(f"Span {span} overlaps edited span {(other_start, other_end)}")

        edits = dict(self.edits)
        edits[span] = replacement
        return PersistedLog(self.base, tuple(sorted(edits.items())))


def sanitize_error_message(message: str) -> str:
    cleaned = _SENTINEL_UNSAFE.sub("", _WHITESPACE.sub(" ", message or "")).strip()
    if len(cleaned) > MAX_ERROR_MESSAGE:
        cleaned = cleaned[: MAX_ERROR_MESSAGE - 3].rstrip() + "..."
    return cleaned or "generation failed"


def _markdown_alt(prompt: str) -> str:
    return _WHITESPACE.sub(" ", prompt).replace("[", "").replace("]", "").strip()


def _with_resource(instruction: Instruction, value: str, syntax: TagSyntax) -> str:
    escaped = html.escape(value, quote=True)
    source = instruction.source
    if instruction.resource_span is None:
        insert_at = len(source) - 2 if source.endswith("/>") else len(source) - 1
        return f'{source[:insert_at].rstrip()} {syntax.resource_attr}="{escaped}"{source[insert_at:]}'

    offset = instruction.span[0]
    start = instruction.resource_span[0] - offset
    end = instruction.resource_span[1] - offset
    if instruction.resource_is_bare:
        escaped = f'{syntax.resource_attr}="{escaped}"'
    return source[:start] + escaped + source[end:]


def render_outcome(instruction: Instruction, outcome: Outcome, syntax: TagSyntax | None = None) -> str:
    """Return the replacement text for an instruction's span."""
    syntax = syntax or TagSyntax()

    if instruction.kind is GrammarKind.ATTRIBUTE:
        value = outcome.resource if outcome.succeeded else syntax.error_resource
        return _with_resource(instruction, value, syntax)

    if not outcome.succeeded:
        return f"{syntax.legacy_error_marker}{sanitize_error_message(outcome.error)}]"
    if instruction.in_resource_slot:
        return html.escape(outcome.resource, quote=True)
    return f"![{_markdown_alt(instruction.prompt)}]({outcome.resource})"


def apply_result(
    log: PersistedLog,
    instruction: Instruction,
    outcome: Outcome,
    syntax: TagSyntax | None = None,
) -> PersistedLog:
    """Return a new log with the instruction's span rewritten for `outcome`.

    Raises:
        ValueError: When the instruction was not parsed from this log's base.
    """
    start, end = instruction.span
    if log.base[start:end] != instruction.source:
        raise ValueError(f"Instruction at {instruction.span} does not belong to this log")
    return log.with_edit(instruction.span, render_outcome(instruction, outcome, syntax))
