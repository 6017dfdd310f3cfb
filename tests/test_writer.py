import pytest

from inline_imagegen.parsing.instruction_parser import InstructionParser
from inline_imagegen.persistence.writer import (
    MAX_ERROR_MESSAGE,
    Outcome,
    PersistedLog,
    apply_result,
    render_outcome,
    sanitize_error_message,
)


def parse_one(text):
    (item,) = InstructionParser().scan(text)
    return item


def test_attribute_success_replaces_only_the_resource_value():
    text = '<p>hi</p><img data-iig-instruction=\'{"prompt":"a boat"}\' src="[IMG:GEN]" alt="x">'
    item = parse_one(text)

    result = apply_result(PersistedLog(text), item, Outcome.done("/user/images/boat.png")).text

    assert result == (
        '<p>hi</p><img data-iig-instruction=\'{"prompt":"a boat"}\' '
        'src="/user/images/boat.png" alt="x">'
    )


def test_attribute_without_resource_gets_one_inserted():
    text = '<img data-iig-instruction=\'{"prompt":"a boat"}\' />'
    item = parse_one(text)

    result = render_outcome(item, Outcome.done("/a.png"))

    assert result == '<img data-iig-instruction=\'{"prompt":"a boat"}\' src="/a.png"/>'


def test_attribute_failure_points_at_error_resource():
    text = '<img data-iig-instruction=\'{"prompt":"a boat"}\' src="[PENDING]">'
    item = parse_one(text)

    result = render_outcome(item, Outcome.failed("API Error (500): down"))

    assert 'src="/img/iig-error.svg"' in result


def test_resource_value_is_attribute_escaped():
    text = '<img data-iig-instruction=\'{"prompt":"a boat"}\' src="[PENDING]">'
    item = parse_one(text)

    result = render_outcome(item, Outcome.done('/a".png'))

    assert 'src="/a&quot;.png"' in result


def test_legacy_success_in_prose_becomes_markdown_image():
    text = 'Look [IMG:GEN:{"prompt":"a [small] boat"}] there'
    item = parse_one(text)

    result = apply_result(PersistedLog(text), item, Outcome.done("/b.png")).text

    assert result == "Look ![a small boat](/b.png) there"


def test_legacy_success_in_resource_slot_is_bare_reference():
    text = '<img src="[IMG:GEN:{"prompt":"a boat"}]">'
    item = parse_one(text)

    result = apply_result(PersistedLog(text), item, Outcome.done("/b.png")).text

    assert result == '<img src="/b.png">'


def test_legacy_failure_writes_truncated_sentinel():
    text = '[IMG:GEN:{"prompt":"a boat"}]'
    item = parse_one(text)
    message = 'API Error (500): <html>"' + "x" * 300 + "]</html>"

    result = render_outcome(item, Outcome.failed(message))

    assert result.startswith("[IMG:ERROR:API Error (500): html")
    assert result.endswith("...]")
    inner = result[len("[IMG:ERROR:"):-1]
    assert len(inner) == MAX_ERROR_MESSAGE
    assert "]" not in inner and '"' not in inner


def test_sanitize_error_message_never_empty():
    assert sanitize_error_message("") == "generation failed"
    assert sanitize_error_message("  a\n\tb  ") == "a b"


def test_reapplying_an_outcome_is_idempotent():
    text = 'A [IMG:GEN:{"prompt":"one"}] B'
    item = parse_one(text)
    log = PersistedLog(text)

    once = apply_result(log, item, Outcome.done("/1.png"))
    twice = apply_result(once, item, Outcome.done("/1.png"))
    replaced = apply_result(twice, item, Outcome.failed("late failure"))

    assert once.text == twice.text == "A ![one](/1.png) B"
    assert replaced.text == "A [IMG:ERROR:late failure] B"
    assert len(replaced.edits) == 1


def test_edits_for_sibling_instructions_keep_their_offsets():
    text = '[IMG:GEN:{"prompt":"first"}] and [IMG:GEN:{"prompt":"second"}]'
    first, second = InstructionParser().scan(text)

    log = apply_result(PersistedLog(text), second, Outcome.failed("nope"))
    log = apply_result(log, first, Outcome.done("/a-much-longer-path/first.png"))

    assert log.text == "![first](/a-much-longer-path/first.png) and [IMG:ERROR:nope]"


def test_instruction_from_another_log_is_rejected():
    item = parse_one('[IMG:GEN:{"prompt":"one"}]')

    with pytest.raises(ValueError):
        apply_result(PersistedLog("completely different text"), item, Outcome.done("/1.png"))


def test_overlapping_edits_are_rejected():
    log = PersistedLog("0123456789").with_edit((2, 6), "x")

    with pytest.raises(ValueError):
        log.with_edit((4, 8), "y")
    with pytest.raises(ValueError):
        log.with_edit((5, 20), "y")


def test_bare_resource_attribute_gets_a_quoted_value():
    text = '<img data-iig-instruction=\'{"prompt":"a moon"}\' src>'
    item = parse_one(text)

    result = apply_result(PersistedLog(text), item, Outcome.done("/a.png")).text

    assert result == '<img data-iig-instruction=\'{"prompt":"a moon"}\' src="/a.png">'
    (resolved,) = InstructionParser().scan(result)
    assert resolved.current_resource == "/a.png"
    assert not resolved.resource_is_bare
