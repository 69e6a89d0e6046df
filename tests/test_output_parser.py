import pytest

from conftest import segment_json
from storyloom.errors import GenerationFormatError
from storyloom.models.generation import SegmentStatus
from storyloom.parsing.output_parser import (
    DEFAULT_CONTENT,
    DEFAULT_OPTIONS,
    OutputParser,
    decode,
    parse,
    repair_json,
    salvage_fields,
)


def test_strict_json_inside_code_fence():
    raw = "Here you go:\n```json\n" + segment_json("Dawn", "It begins.") + "\n```"
    stage, _ = decode(raw)
    seg = parse(raw)
    assert stage == "strict"
    assert seg.title == "Dawn"
    assert seg.content == "It begins."
    assert seg.option_texts == ["Go left", "Go right"]
    assert seg.status == SegmentStatus.ACTIVE


def test_strict_json_surrounded_by_prose():
    raw = "Sure! " + segment_json(content="Braces {inside} strings.") + " Enjoy."
    assert parse(raw).content == "Braces {inside} strings."


def test_mixed_quoting_and_bare_keys_are_repaired():
    raw = """"segmentTitle": "X", content: 'Hello', options: ['a','b']"""
    stage, _ = decode(raw)
    seg = parse(raw)
    assert stage == "repair"
    assert seg.title == "X"
    assert seg.content == "Hello"
    assert seg.option_texts == ["a", "b"]
    assert seg.status == SegmentStatus.ACTIVE


def test_apostrophes_survive_quote_repair():
    seg = parse("{'content': 'It's dark in here', 'options': ['Run']}")
    assert seg.content == "It's dark in here"
    assert seg.option_texts == ["Run"]


def test_miscased_keys_and_trailing_commas():
    raw = '{"Content": "Fog rolls in.", "Options": ["Wait", "Walk",], "Status": "active",}'
    seg = parse(raw)
    assert seg.content == "Fog rolls in."
    assert seg.option_texts == ["Wait", "Walk"]


def test_doubled_key_quotes():
    assert '"content":' in repair_json('{"content"": "x"}')


def test_truncated_content_is_salvaged():
    raw = '{"segmentTitle": "Cut", "content": "The door creaks open and'
    stage, data = decode(raw)
    seg = parse(raw)
    assert stage == "salvage"
    assert data["title"] == "Cut"
    assert seg.content == "The door creaks open and"
    assert seg.option_texts == list(DEFAULT_OPTIONS)


def test_salvage_reads_options_only_from_the_options_region():
    raw = '"content": "He said "run" twice", "options": ["Hide", "Fight"] "status": "COMPLETED'
    found = salvage_fields(raw)
    assert found["options"] == ["Hide", "Fight"]
    assert found["status"] == "COMPLETED"


def test_plain_prose_becomes_content():
    seg = parse("The lighthouse keeper never came back.")
    assert seg.content == "The lighthouse keeper never came back."
    assert seg.option_texts == list(DEFAULT_OPTIONS)


def test_ending_forces_no_options():
    seg = parse(segment_json(options=("a", "b")), is_ending=True)
    assert seg.options == []


def test_rich_schema_options_and_characters():
    raw = """{
        "content": "c",
        "options": [{"text": "Fight", "risk": "high"}, {"text": "Flee"}],
        "locationContext": "Cellar",
        "newItems": [{"name": "Key", "description": "rusty"}],
        "newCharacters": [{"name": "Ada"}, {"name": "Bo", "relationship": "ally"}]
    }"""
    seg = parse(raw)
    assert [(o.text, o.risk) for o in seg.options] == [("Fight", "HIGH"), ("Flee", "MEDIUM")]
    assert seg.location_context == "Cellar"
    assert seg.new_items[0].name == "Key"
    assert [c.relationship for c in seg.new_characters] == ["NEUTRAL", "ALLY"]


def test_unknown_status_becomes_active_and_completed_is_kept():
    assert parse(segment_json(status="paused")).status == SegmentStatus.ACTIVE
    seg = parse(segment_json(status="completed", options=()))
    assert seg.status == SegmentStatus.COMPLETED
    assert seg.options == []


@pytest.mark.parametrize("raw", ["", "   ", "\n\t"])
def test_empty_input_raises(raw):
    with pytest.raises(GenerationFormatError):
        parse(raw)


@pytest.mark.parametrize(
    "raw",
    [
        "{",
        "}",
        "[]",
        "null",
        '"just a string"',
        '{"options": []}',
        "{'content': 'unterminated",
        '{"content": ""}',
        "```json\n```",
        "content: 'bare' options: [",
        '{"content": "Hello", "newItems": 5}',
        '{"content": "Hello", "newCharacters": true}',
        '{"content": "Hello", "newItems": 3.5, "newCharacters": "Ann"}',
    ],
)
def test_any_nonblank_input_yields_a_segment(raw):
    seg = parse(raw)
    assert seg.content
    assert seg.status in (SegmentStatus.ACTIVE, SegmentStatus.COMPLETED)


def test_empty_content_gets_default():
    assert parse('{"content": "  "}').content == DEFAULT_CONTENT


def test_parse_summary():
    raw = '{"title": "The End", "summary": "All was well.", "keyMoments": ["a", ""], "theme": "Loss"}'
    summary = OutputParser.parse_summary(raw)
    assert summary.title == "The End"
    assert summary.content == "All was well."
    assert summary.key_moments == ["a"]
    assert summary.theme == "Loss"


def test_parse_summary_defaults_and_failure():
    summary = OutputParser.parse_summary('{"summary": "Short."}')
    assert summary.title == "Adventure Summary"
    assert summary.theme == "Adventure"
    with pytest.raises(GenerationFormatError):
        OutputParser.parse_summary('{"title": "No body"}')
