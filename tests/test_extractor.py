from __future__ import annotations

from storyboarder.parsing.extractor import extract_json_block, load_json_payload


def test_json_fence_wins_over_surrounding_text() -> None:
    text = 'Here you go {not this}\n```JSON\n{"scenes": []}\n```\nthanks'
    assert extract_json_block(text) == '{"scenes": []}'


def test_bare_fence_is_used_without_json_tag() -> None:
    text = "```\n[{\"shotNumber\": 1}]\n```"
    assert extract_json_block(text) == '[{"shotNumber": 1}]'


def test_empty_fence_falls_back_to_brace_span() -> None:
    text = "```json\n```\n{\"a\": 1}"
    assert extract_json_block(text) == '{"a": 1}'


def test_brace_span_from_first_opener_to_last_closer() -> None:
    text = 'Sure! {"entries": [{"shot": 2}]} Let me know.'
    assert extract_json_block(text) == '{"entries": [{"shot": 2}]}'


def test_no_braces_returns_none() -> None:
    assert extract_json_block("I could not do that.") is None
    assert extract_json_block("") is None


def test_closer_before_opener_returns_none() -> None:
    assert extract_json_block("} nothing {") is None


def test_malformed_json_returns_none_without_repair() -> None:
    assert load_json_payload('{"entries": [{"shotNumber": 1,}') is None


def test_repair_recovers_trailing_comma() -> None:
    payload = load_json_payload('{"entries": [{"shotNumber": 1, "dialogue": "Hi",}]}', repair=True)
    assert payload == {"entries": [{"shotNumber": 1, "dialogue": "Hi"}]}


def test_plain_reply_decodes() -> None:
    assert load_json_payload('[{"shot": 1}]') == [{"shot": 1}]
