import json

import pytest
from bs4 import NavigableString

from inline_imagegen.core.errors import ResolutionMiss
from inline_imagegen.parsing.instruction_parser import InstructionParser
from inline_imagegen.parsing.models import GrammarKind, Instruction, TagSyntax
from inline_imagegen.view.rendered_view import RenderedView
from inline_imagegen.view.resolver import (
    AnyMarkerStrategy,
    DecodedPromptStrategy,
    MarkerSlotStrategy,
    NormalizedFingerprintStrategy,
    RawContainmentStrategy,
    TargetResolver,
)


SYNTAX = TagSyntax()


def instruction(prompt: str, kind: GrammarKind = GrammarKind.ATTRIBUTE) -> Instruction:
    payload = json.dumps({"prompt": prompt})
    return Instruction(
        span=(0, 0),
        kind=kind,
        prompt=prompt,
        source=f"[IMG:GEN:{payload}]",
        payload=payload,
    )


def test_normalized_fingerprint_matches_entity_encoded_payload():
    view = RenderedView.from_log(
        '<img data-iig-instruction="{&quot;prompt&quot;:&quot;a fox &amp; a hound&quot;}" src="[PENDING]">'
    )

    handle = NormalizedFingerprintStrategy(SYNTAX).match(
        instruction("a fox & a hound"), view, set()
    )

    assert handle is not None
    assert view.node(handle).name == "img"


def test_decoded_prompt_matches_unicode_escaped_payload():
    view = RenderedView.from_log(
        '<img data-iig-instruction=\'{"prompt":"caf\\u00e9 at dusk"}\' src="[PENDING]">'
    )
    target = instruction("café at dusk")

    assert NormalizedFingerprintStrategy(SYNTAX).match(target, view, set()) is None
    assert DecodedPromptStrategy(SYNTAX).match(target, view, set()) is not None


def test_raw_containment_finds_legacy_tag_in_prose():
    text = '<p>Before [IMG:GEN:{"prompt":"a castle"}] after</p>'
    (parsed,) = InstructionParser().scan(text)
    view = RenderedView.from_log(text)

    handle = RawContainmentStrategy(SYNTAX).match(parsed, view, set())

    node = view.node(handle)
    assert isinstance(node, NavigableString)
    assert str(node) == parsed.source
    assert view.html() == text


def test_marker_slot_picks_first_unclaimed_pending_image():
    view = RenderedView.from_log('<img src="[IMG:GEN]"><img src="/img/iig-error.svg">')
    strategy = MarkerSlotStrategy(SYNTAX)

    first = strategy.match(instruction("unrelated"), view, set())
    second = strategy.match(instruction("unrelated"), view, {first})

    assert view.node(first)["src"] == "[IMG:GEN]"
    assert view.node(second)["src"] == "/img/iig-error.svg"


def test_any_marker_looks_at_every_attribute_of_image_like_tags():
    view = RenderedView.from_log('<picture><source srcset="[PENDING]"></picture>')

    assert MarkerSlotStrategy(SYNTAX).match(instruction("x"), view, set()) is None
    handle = AnyMarkerStrategy(SYNTAX).match(instruction("x"), view, set())
    assert view.node(handle).name == "source"


def test_resolver_prefers_payload_match_over_marker_slot():
    view = RenderedView.from_log(
        '<img src="[IMG:GEN]">'
        '<img data-iig-instruction=\'{"prompt":"the lake"}\' src="[IMG:GEN]">'
    )

    handle = TargetResolver(SYNTAX).resolve(instruction("the lake"), view)

    assert view.node(handle).has_attr("data-iig-instruction")


def test_resolver_skips_claimed_handles():
    view = RenderedView.from_log(
        '<img data-iig-instruction=\'{"prompt":"twin"}\' src="[IMG:GEN]">'
        '<img data-iig-instruction=\'{"prompt":"twin"}\' src="[IMG:GEN]">'
    )
    resolver = TargetResolver(SYNTAX)

    first = resolver.resolve(instruction("twin"), view)
    second = resolver.resolve(instruction("twin"), view, [first])

    assert first != second


def test_resolver_miss():
    view = RenderedView.from_log("<p>nothing to see</p>")
    resolver = TargetResolver(SYNTAX)

    assert resolver.resolve(instruction("lost"), view) is None
    with pytest.raises(ResolutionMiss):
        resolver.require(instruction("lost"), view)


def test_custom_strategy_list_is_respected():
    view = RenderedView.from_log('<img src="[IMG:GEN]">')
    resolver = TargetResolver(SYNTAX, strategies=[NormalizedFingerprintStrategy(SYNTAX)])

    assert resolver.resolve(instruction("anything"), view) is None


def test_view_handle_survives_replacement():
    view = RenderedView.from_log('<img src="[IMG:GEN]">')
    handle = TargetResolver(SYNTAX).require(instruction("x"), view)

    view.show_loading(handle, "Generating image...")
    view.set_status(handle, "Saving...")
    assert "Saving..." in view.html()

    view.show_image(handle, "/user/images/a.png", "x", None)
    assert view.node(handle)["src"] == "/user/images/a.png"
    assert "iig-loading-placeholder" not in view.html()


def test_error_message_is_escaped_in_view():
    view = RenderedView.from_log('<img src="[IMG:GEN]">')
    handle = TargetResolver(SYNTAX).require(instruction("x"), view)

    view.show_error(handle, "<script>alert(1)</script>")

    assert "<script>" not in view.html()
    assert "&lt;script&gt;" in view.html()


def test_handles_are_stable_across_lookups_and_replacement():
    view = RenderedView.from_log('<p>a</p><img src="[IMG:GEN]"><img src="[PENDING]">')

    first = list(view.find(lambda element: element.name == "img"))
    second = list(view.find(lambda element: element.name == "img"))
    assert first == second
    assert len(set(first)) == 2

    old = view.node(first[0])
    replacement = view.soup.new_tag("span")
    view.replace(first[0], replacement)

    assert view.handle_for(replacement) == first[0]
    assert view.node(first[0]) is replacement
    assert view.handle_for(old) not in first
