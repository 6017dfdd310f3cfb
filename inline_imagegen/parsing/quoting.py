"""Tolerant quote normalization and JSON decoding for instruction payloads.

Models write instruction JSON inside HTML attributes, so the same payload can
arrive as plain JSON, entity-encoded JSON (`&quot;`, `&#34;`, `&#x22;`), or
JSON written with single quotes. Both grammars and the view resolver decode
through this module so they agree on what a payload means.
"""

import html
import json
import re

from inline_imagegen.core.errors import InstructionParseError


_TYPOGRAPHIC_QUOTES = {
    "“": '"',
    "”": '"',
    "„": '"',
    "‘": "'",
    "’": "'",
}

# Single-quoted JSON keys/values: 'key' -> "key" when the quote delimits a token.
_SINGLE_QUOTED_TOKEN = re.compile(r"(?<![\w\\])'((?:[^'\\]|\\.)*)'")


def normalize_quotes(text: str, max_passes: int = 2) -> str:
    """Decode HTML entities, at most `max_passes` times.

    Two passes cover double encoding such as `&amp;quot;`, which appears when
    a payload has already passed through one HTML serialization. Entities left
    after that are literal text.
    """
    current = text
    for _ in range(max_passes):
        decoded = html.unescape(current)
        if decoded == current:
            break
        current = decoded
    return current


def _relaxed_variants(text: str) -> list[str]:
    variants = [text]
    relaxed = text
    for typographic, plain in _TYPOGRAPHIC_QUOTES.items():
        relaxed = relaxed.replace(typographic, plain)
    if relaxed != text:
        variants.append(relaxed)
    if "'" in relaxed:
        variants.append(_SINGLE_QUOTED_TOKEN.sub(_requote, relaxed))
    return variants


def decode_payload(raw: str) -> dict:
    """Decode an instruction payload into a JSON object.

    Decoding levels are tried in order: one entity pass (the attribute value as
    a browser reads it), the raw text, then a second pass for double encoding.
    The first level that yields JSON wins, so an entity the author meant
    literally survives.

    Args:
        raw: Payload text as found in the document.

    Returns:
        Decoded JSON object.

    Raises:
        InstructionParseError: When no normalization yields a JSON object.
    """
    levels = []
    for text in (normalize_quotes(raw, 1), raw, normalize_quotes(raw, 2)):
        text = text.strip()
        if text not in levels:
            levels.append(text)

    last_error = None
    for level in levels:
        for candidate in _relaxed_variants(level):
            try:
                data = json.loads(candidate)
            except json.JSONDecodeError as exc:
                last_error = exc
                continue
            if isinstance(data, dict):
                return data
            raise InstructionParseError(f"Instruction payload is not a JSON object: {raw[:80]!r}")

    raise InstructionParseError(f"Malformed instruction JSON: {last_error}")


def _requote(match: re.Match) -> str:
    inner = match.group(1).replace("\\'", "'").replace('"', '\\"')
    return f'"{inner}"'
