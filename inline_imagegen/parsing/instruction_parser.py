"""Instruction parser for the attribute-embedded and legacy bracket grammars.

Processing flow:
    1. `scan` walks `<img>` elements and collects those carrying an instruction
       attribute (attribute grammar), recording exact attribute offsets.
    2. `scan` then finds `[IMG:GEN:{...}]` markers outside those elements
       (legacy grammar) with a string-aware brace scanner.
    3. `parse` filters the scan result by resource state for the requested
       `ParseMode`, consulting the existence probe for concrete paths when
       `check_paths` is enabled (hallucination recovery).

Error handling strategy:
    A malformed payload or empty prompt is logged at WARNING and skipped. No
    tag can abort parsing of the tags after it.

Determinism:
    `scan` is pure. `parse` depends on the existence probe only.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Protocol

from inline_imagegen.core.errors import ConfigurationError, InstructionParseError
from inline_imagegen.parsing.models import (
    GrammarKind,
    Instruction,
    ParseMode,
    ResourceState,
    TagSyntax,
)
from inline_imagegen.parsing.quoting import decode_payload


logger = logging.getLogger(__name__)

_IMG_OPEN = re.compile(r"<img\b", re.IGNORECASE)
_ATTR_NAME = re.compile(r"[^\s=<>/\"']+")
_UNQUOTED_VALUE = re.compile(r"[^\s>]*")
# How far back to look for an enclosing `<img ... src="` before a legacy marker.
_SLOT_LOOKBEHIND = 100


class ExistenceProbe(Protocol):
    """Answers whether a resource reference has a backing asset."""

    async def exists(self, path: str) -> bool:
        ...


@dataclass(frozen=True)
class _Attribute:
    value: str
    start: int
    end: int
    # Written without `=`; `start`/`end` then cover the attribute name.
    bare: bool = False


def _read_img_tag(text: str, start: int) -> tuple[int, dict[str, _Attribute]] | None:
    """Read one `<img ...>` element starting at `start`.

    Returns:
        `(end_offset, attributes)` or `None` when the element never closes or
        runs into the next tag before closing.
        Attribute names are lower-cased; the first occurrence wins.
    """
    pos = start + len("<img")
    size = len(text)
    attrs: dict[str, _Attribute] = {}

    while pos < size:
        ch = text[pos]
        if ch == ">":
            return pos + 1, attrs
        if ch == "<":
            return None
        if ch.isspace() or ch == "/":
            pos += 1
            continue

        name_match = _ATTR_NAME.match(text, pos)
        if not name_match:
            pos += 1
            continue
        name = name_match.group(0).lower()
        pos = name_match.end()

        while pos < size and text[pos].isspace():
            pos += 1
        if pos >= size or text[pos] != "=":
            attrs.setdefault(name, _Attribute("", name_match.start(), name_match.end(), bare=True))
            continue

        pos += 1
        while pos < size and text[pos].isspace():
            pos += 1
        if pos < size and text[pos] in "\"'":
            quote = text[pos]
            close = text.find(quote, pos + 1)
            if close == -1 or _IMG_OPEN.search(text, pos + 1, close):
                return None
            attrs.setdefault(name, _Attribute(text[pos + 1:close], pos + 1, close))
            pos = close + 1
        else:
            value_match = _UNQUOTED_VALUE.match(text, pos)
            attrs.setdefault(name, _Attribute(value_match.group(0), pos, value_match.end()))
            pos = value_match.end()

    return None


def find_json_object_end(text: str, start: int) -> int:
    """Return the offset just past the JSON object opening at `start`, or -1.

    The scan tracks whether it is inside a string literal and whether an escape
    is pending, so braces inside strings never change the depth. Either quote
    character opens a string; the same character closes it.
    """
    if start >= len(text) or text[start] != "{":
        return -1

    depth = 0
    string_quote = None
    escape_pending = False

    for index in range(start, len(text)):
        ch = text[index]

        if escape_pending:
            escape_pending = False
            continue

        if string_quote is not None:
            if ch == "\\":
                escape_pending = True
            elif ch == string_quote:
                string_quote = None
            continue

        if ch in "\"'":
            string_quote = ch
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return index + 1

    return -1


def _optional_str(data: dict, *keys: str) -> str | None:
    for key in keys:
        value = data.get(key)
        if value is None:
            continue
        value = str(value).strip()
        if value:
            return value
    return None


def _fields_from_payload(payload: str) -> dict:
    """Decode a payload into `Instruction` keyword fields.

    Raises:
        InstructionParseError: Malformed JSON or a missing/empty prompt.
    """
    data = decode_payload(payload)
    prompt = data.get("prompt")
    if not isinstance(prompt, str) or not prompt.strip():
        raise InstructionParseError("Instruction has no prompt")

    return {
        "prompt": prompt.strip(),
        "style": _optional_str(data, "style"),
        "aspect_ratio": _optional_str(data, "aspect_ratio", "aspectRatio"),
        "image_size": _optional_str(data, "image_size", "imageSize"),
        "quality": _optional_str(data, "quality"),
    }


class InstructionParser:
    """Extracts instructions from message text.

    Args:
        syntax: Tag tokens for both grammars.
        probe: Existence probe used for hallucination recovery.
        check_paths: Verify concrete resource paths in `NORMAL` mode. Requires
            `probe`.
    """

    def __init__(
        self,
        syntax: TagSyntax | None = None,
        probe: ExistenceProbe | None = None,
        check_paths: bool = False,
    ) -> None:
        if check_paths and probe is None:
            raise ConfigurationError(["check_paths is enabled but no existence probe is set"])
        self.syntax = syntax or TagSyntax()
        self.probe = probe
        self.check_paths = check_paths

    async def parse(self, text: str, mode: ParseMode = ParseMode.NORMAL) -> list[Instruction]:
        """Return the instructions that need generation, in document order.

        Args:
            text: Message text.
            mode: `NORMAL` keeps pending, empty and (with `check_paths`)
                hallucinated tags. `FORCE_ALL` keeps every decodable tag.

        Returns:
            Ordered, non-overlapping instructions.
        """
        scanned = self.scan(text)
        if mode is ParseMode.FORCE_ALL:
            return scanned

        present = [
            item for item in scanned if item.resource_state is ResourceState.PRESENT
        ]
        missing: set[int] = set()
        if present and self.check_paths:
            found = await asyncio.gather(
                *(self.probe.exists(item.current_resource) for item in present)
            )
            for item, exists in zip(present, found):
                if not exists:
                    logger.warning(
                        "Resource %r has no backing asset; queueing for generation",
                        item.current_resource,
                    )
                    missing.add(item.span[0])

        return [
            item
            for item in scanned
            if item.resource_state in (ResourceState.PENDING, ResourceState.EMPTY)
            or item.span[0] in missing
        ]

    def scan(self, text: str) -> list[Instruction]:
        """Return every decodable instruction with its resource state."""
        found = self._scan_attribute_tags(text)
        claimed = [item.span for item in found]
        found.extend(self._scan_legacy_tags(text, claimed))
        found.sort(key=lambda item: item.span[0])
        return found

    def _scan_attribute_tags(self, text: str) -> list[Instruction]:
        syntax = self.syntax
        instructions = []
        pos = 0

        while True:
            match = _IMG_OPEN.search(text, pos)
            if not match:
                break
            start = match.start()
            parsed = _read_img_tag(text, start)
            if parsed is None:
                logger.warning("Skipping unterminated image tag at offset %d", start)
                pos = start + 1
                continue
            end, attrs = parsed
            pos = end

            payload_attr = attrs.get(syntax.instruction_attr.lower())
            if payload_attr is None:
                continue

            try:
                fields = _fields_from_payload(payload_attr.value)
            except InstructionParseError as exc:
                logger.warning("Skipping image tag at offset %d: %s", start, exc)
                continue

            resource_attr = attrs.get(syntax.resource_attr.lower())
            resource = resource_attr.value.strip() if resource_attr else ""
            if syntax.is_error_marker(resource):
                state = ResourceState.ERROR
            elif syntax.is_pending_marker(resource) or syntax.legacy_marker in resource:
                state = ResourceState.PENDING
            elif not resource:
                state = ResourceState.EMPTY
            else:
                state = ResourceState.PRESENT

            instructions.append(
                Instruction(
                    span=(start, end),
                    kind=GrammarKind.ATTRIBUTE,
                    source=text[start:end],
                    payload=payload_attr.value,
                    current_resource=resource or None,
                    resource_span=(
                        (resource_attr.start, resource_attr.end) if resource_attr else None
                    ),
                    resource_is_bare=bool(resource_attr and resource_attr.bare),
                    resource_state=state,
                    **fields,
                )
            )

        return instructions

    def _scan_legacy_tags(
        self, text: str, claimed: list[tuple[int, int]]
    ) -> list[Instruction]:
        marker = self.syntax.legacy_marker
        slot_pattern = re.compile(
            r"<img\b[^>]*\b" + re.escape(self.syntax.resource_attr) + r"\s*=\s*[\"']?$",
            re.IGNORECASE,
        )
        instructions = []
        search_from = 0

        while True:
            marker_index = text.find(marker, search_from)
            if marker_index == -1:
                break

            json_start = marker_index + len(marker)
            if any(start <= marker_index < end for start, end in claimed):
                search_from = json_start
                continue

            json_end = find_json_object_end(text, json_start)
            if json_end == -1:
                logger.warning("Unterminated instruction JSON at offset %d", marker_index)
                search_from = json_start
                continue
            if not text.startswith("]", json_end):
                search_from = json_end
                continue

            tag_end = json_end + 1
            payload = text[json_start:json_end]
            search_from = tag_end
            try:
                fields = _fields_from_payload(payload)
            except InstructionParseError as exc:
                logger.warning("Skipping legacy tag at offset %d: %s", marker_index, exc)
                continue

            before = text[max(0, marker_index - _SLOT_LOOKBEHIND):marker_index]
            instructions.append(
                Instruction(
                    span=(marker_index, tag_end),
                    kind=GrammarKind.LEGACY,
                    source=text[marker_index:tag_end],
                    payload=payload,
                    in_resource_slot=bool(slot_pattern.search(before)),
                    **fields,
                )
            )

        return instructions
