"""Instruction data contracts shared by parser, resolver, engine and writer.

Architectural role:
    Defines the immutable output of `instruction_parser` and the tag syntax
    constants every stage agrees on. Downstream stages never re-read the raw
    text to learn instruction fields; they read these records.

Determinism:
    Pure data; no I/O.
"""

from dataclasses import dataclass
from enum import Enum


ASPECT_RATIOS = ("1:1", "2:3", "3:2", "3:4", "4:3", "4:5", "5:4", "9:16", "16:9", "21:9")
IMAGE_SIZES = ("1K", "2K", "4K")


class GrammarKind(str, Enum):
    """Which tag grammar produced an instruction."""

    ATTRIBUTE = "attribute"
    LEGACY = "legacy"


class ParseMode(str, Enum):
    """`NORMAL` returns pending tags only; `FORCE_ALL` every decodable tag."""

    NORMAL = "normal"
    FORCE_ALL = "force_all"


class ResourceState(str, Enum):
    """State of an instruction's resource slot at scan time."""

    PENDING = "pending"
    EMPTY = "empty"
    PRESENT = "present"
    ERROR = "error"


@dataclass(frozen=True)
class TagSyntax:
    """Literal tokens of both grammars.

    Attributes:
        instruction_attr: Attribute holding the instruction JSON on `<img>`.
        resource_attr: Attribute holding the resource reference.
        pending_markers: Tokens meaning "not generated yet".
        error_resource: Fixed resource written into the slot after a failure
            (attribute grammar).
        legacy_marker: Opening token of the bracket grammar.
        legacy_error_marker: Opening token of the bracket grammar's error sentinel.
    """

    instruction_attr: str = "data-iig-instruction"
    resource_attr: str = "src"
    pending_markers: tuple[str, ...] = ("[IMG:GEN]", "[PENDING]")
    error_resource: str = "/img/iig-error.svg"
    legacy_marker: str = "[IMG:GEN:"
    legacy_error_marker: str = "[IMG:ERROR:"

    def is_pending_marker(self, value: str) -> bool:
        return any(marker in value for marker in self.pending_markers)

    def is_error_marker(self, value: str) -> bool:
        return self.error_resource in value or self.legacy_error_marker in value

    def marker_tokens(self) -> tuple[str, ...]:
        """Every token that marks an unresolved or failed resource slot."""
        return (
            *self.pending_markers,
            self.legacy_marker.rstrip(":"),
            self.legacy_error_marker.rstrip(":"),
            self.error_resource,
        )


@dataclass(frozen=True)
class Instruction:
    """One parsed image-generation request.

    Attributes:
        span: `(start, end)` offsets of the whole tag in the parsed text.
        kind: Grammar that produced the instruction.
        prompt: Non-empty generation prompt.
        source: Verbatim tag text, `text[span[0]:span[1]]`.
        payload: Instruction JSON exactly as written in the text.
        style: Optional style folded into the prompt by the providers.
        aspect_ratio: Optional requested aspect ratio (not validated here).
        image_size: Optional resolution tier (not validated here).
        quality: Optional quality hint.
        current_resource: Resource slot value at parse time, if any.
        resource_span: Offsets of the resource attribute value (attribute
            grammar). `None` when the tag has no resource attribute.
        resource_is_bare: The resource attribute was written without a value;
            `resource_span` then covers the attribute name.
        in_resource_slot: Legacy tag written inside an `<img src="...">`.
        resource_state: Classification of `current_resource`.
    """

    span: tuple[int, int]
    kind: GrammarKind
    prompt: str
    source: str
    payload: str
    style: str | None = None
    aspect_ratio: str | None = None
    image_size: str | None = None
    quality: str | None = None
    current_resource: str | None = None
    resource_span: tuple[int, int] | None = None
    resource_is_bare: bool = False
    in_resource_slot: bool = False
    resource_state: ResourceState = ResourceState.PENDING

    @property
    def fingerprint(self) -> str:
        """Prompt prefix used to find this instruction in a re-encoded view."""
        return self.prompt[:30]
