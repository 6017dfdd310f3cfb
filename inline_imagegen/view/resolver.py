"""Target resolver: binds a parsed instruction to a node of the rendered view.

Resolution strategy:
    The view may re-encode quotes and entities differently from the log text,
    so matching runs through a ranked list of strategies. The first strategy
    returning a handle wins; declaration order is the tie-break.

    1. `NormalizedFingerprintStrategy`: entity-normalized containment of the
       prompt fingerprint in the node's stored payload.
    2. `DecodedPromptStrategy`: JSON-decode the stored payload and compare
       prompt prefixes.
    3. `RawContainmentStrategy`: un-normalized substring containment, then
       prose text nodes holding the verbatim legacy tag.
    4. `MarkerSlotStrategy`: first `<img>` whose resource slot still holds a
       pending or error marker.
    5. `AnyMarkerStrategy`: any image-like node carrying a marker token in any
       attribute.

Failure handling:
    A miss returns `None`. Callers append a detached placeholder instead; a
    miss never affects sibling instructions.
"""

import logging
from typing import Iterable, Protocol

from bs4 import Tag

from inline_imagegen.core.errors import InstructionParseError, ResolutionMiss
from inline_imagegen.parsing.models import Instruction, TagSyntax
from inline_imagegen.parsing.quoting import decode_payload, normalize_quotes
from inline_imagegen.view.rendered_view import IMAGE_LIKE_TAGS, RenderedView, ViewHandle


logger = logging.getLogger(__name__)


class ResolutionStrategy(Protocol):
    name: str

    def match(
        self, instruction: Instruction, view: RenderedView, claimed: set[ViewHandle]
    ) -> ViewHandle | None:
        ...


def _attr_text(element: Tag, name: str) -> str:
    value = element.get(name)
    if value is None:
        return ""
    if isinstance(value, list):
        return " ".join(value)
    return str(value)


class _PayloadStrategy:
    """Base for strategies that compare against the stored instruction payload."""

    name = "payload"

    def __init__(self, syntax: TagSyntax) -> None:
        self.syntax = syntax

    def match(self, instruction, view, claimed):
        attr = self.syntax.instruction_attr.lower()
        for handle in view.find(lambda el: el.has_attr(attr), names="img"):
            if handle in claimed:
                continue
            if self.compare(instruction, _attr_text(view.node(handle), attr)):
                return handle
        return None

    def compare(self, instruction: Instruction, stored: str) -> bool:
        raise NotImplementedError


class NormalizedFingerprintStrategy(_PayloadStrategy):
    name = "normalized-fingerprint"

    def compare(self, instruction, stored):
        fingerprint = normalize_quotes(instruction.fingerprint)
        return bool(fingerprint) and fingerprint in normalize_quotes(stored)


class DecodedPromptStrategy(_PayloadStrategy):
    name = "decoded-prompt"

    def compare(self, instruction, stored):
        try:
            data = decode_payload(stored)
        except InstructionParseError:
            return False
        prompt = data.get("prompt")
        if not isinstance(prompt, str):
            return False
        return prompt.strip()[:30] == instruction.fingerprint


class RawContainmentStrategy(_PayloadStrategy):
    name = "raw-containment"

    def match(self, instruction, view, claimed):
        handle = super().match(instruction, view, claimed)
        if handle is not None:
            return handle
        for handle in view.text_nodes_containing(instruction.source):
            if handle not in claimed:
                return handle
        return None

    def compare(self, instruction, stored):
        return instruction.fingerprint in stored or instruction.payload in stored


class MarkerSlotStrategy:
    name = "marker-slot"

    def __init__(self, syntax: TagSyntax) -> None:
        self.syntax = syntax

    def _is_marked(self, value: str) -> bool:
        syntax = self.syntax
        return (
            syntax.is_pending_marker(value)
            or syntax.is_error_marker(value)
            or syntax.legacy_marker in value
        )

    def match(self, instruction, view, claimed):
        attr = self.syntax.resource_attr.lower()
        for handle in view.find(
            lambda el: self._is_marked(_attr_text(el, attr)), names="img"
        ):
            if handle not in claimed:
                return handle
        return None


class AnyMarkerStrategy:
    name = "any-marker"

    def __init__(self, syntax: TagSyntax) -> None:
        self.tokens = syntax.marker_tokens()

    def _is_marked(self, element: Tag) -> bool:
        for name in element.attrs:
            value = _attr_text(element, name)
            if any(token in value for token in self.tokens):
                return True
        return False

    def match(self, instruction, view, claimed):
        for handle in view.find(self._is_marked, names=list(IMAGE_LIKE_TAGS)):
            if handle not in claimed:
                return handle
        return None


def default_strategies(syntax: TagSyntax) -> list[ResolutionStrategy]:
    return [
        NormalizedFingerprintStrategy(syntax),
        DecodedPromptStrategy(syntax),
        RawContainmentStrategy(syntax),
        MarkerSlotStrategy(syntax),
        AnyMarkerStrategy(syntax),
    ]


class TargetResolver:
    """Runs resolution strategies in order; first match wins."""

    def __init__(
        self,
        syntax: TagSyntax | None = None,
        strategies: Iterable[ResolutionStrategy] | None = None,
    ) -> None:
        self.syntax = syntax or TagSyntax()
        self.strategies = list(strategies) if strategies is not None else default_strategies(self.syntax)

    def resolve(
        self,
        instruction: Instruction,
        view: RenderedView,
        claimed: Iterable[ViewHandle] = (),
    ) -> ViewHandle | None:
        """Return the view handle for `instruction`, or `None` on a miss.

        Args:
            instruction: Parsed instruction.
            view: Rendered view of the same message.
            claimed: Handles already bound to sibling instructions of this run.
        """
        taken = set(claimed)
        for strategy in self.strategies:
            handle = strategy.match(instruction, view, taken)
            if handle is not None:
                logger.debug(
                    "Instruction at %s resolved by %s", instruction.span, strategy.name
                )
                return handle

        logger.info("No view node matched instruction at %s", instruction.span)
        return None

    def require(
        self,
        instruction: Instruction,
        view: RenderedView,
        claimed: Iterable[ViewHandle] = (),
    ) -> ViewHandle:
        """Like `resolve`, but raise `ResolutionMiss` when nothing matches."""
        handle = self.resolve(instruction, view, claimed)
        if handle is None:
            raise ResolutionMiss(f"No view node for instruction at {instruction.span}")
        return handle
