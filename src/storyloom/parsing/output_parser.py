"""Resilient parsing of provider output into narrative records.

Recovery is an ordered pipeline of pure stages, each tried only when the
previous one produced nothing:

1. ``strict_decode``: fences stripped, first balanced object decoded as-is
2. ``repaired_decode``: fixed sequence of textual JSON repairs, then decode
3. ``salvage_fields`` : per-field regex extraction from the raw text

Whatever stage succeeds, ``normalize_segment`` applies the same defaults and
clean-up so callers always get a complete ``ParsedSegment``.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable, Optional

from storyloom.errors import GenerationFormatError
from storyloom.models.generation import (
    ParsedCharacter,
    ParsedItem,
    ParsedOption,
    ParsedSegment,
    ParsedSummary,
    SegmentStatus,
)

log = logging.getLogger(__name__)

DEFAULT_CONTENT = "The adventure continues..."
DEFAULT_OPTIONS = ("Continue exploring", "Take a different approach")
DEFAULT_RISK = "MEDIUM"
DEFAULT_RELATIONSHIP = "NEUTRAL"

_CONTENT_KEYS = ("content", "story", "text", "narrative")
_TITLE_KEYS = ("segmentTitle", "segment_title", "title")

# ---------------------------------------------------------------------------
# Stage 1: strict
# ---------------------------------------------------------------------------

_FENCE_RE = re.compile(r"```(?:json)?\s*\n?(.*?)```", re.DOTALL)


def strip_fences(text: str) -> str:
    """Return the body of the first ```json fence, or *text* unchanged."""
    fenced = _FENCE_RE.search(text)
    if fenced:
        return fenced.group(1).strip()
    return text.strip()


def extract_json_object(text: str) -> Optional[str]:
    """Return the first balanced ``{...}`` block of *text* (string-aware)."""
    start = text.find("{")
    if start == -1:
        return None
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return None


def _loads_object(text: str) -> Optional[dict]:
    try:
        data = json.loads(text)
    except (ValueError, TypeError):
        return None
    return data if isinstance(data, dict) else None


def strict_decode(raw: str) -> Optional[dict]:
    body = strip_fences(raw)
    data = _loads_object(body)
    if data is not None:
        return data
    candidate = extract_json_object(body)
    if candidate is not None and candidate != body:
        return _loads_object(candidate)
    return None


# ---------------------------------------------------------------------------
# Stage 2: syntactic repair
# ---------------------------------------------------------------------------

# single quotes acting as string delimiters (next to structural characters),
# apostrophes inside words are left alone
_SQ_OPEN_RE = re.compile(r"(?:(?<=[\[{:,])|^)(\s*)'", re.MULTILINE)
_SQ_CLOSE_RE = re.compile(r"'(\s*)(?=[\]},:]|$)", re.MULTILINE)
_BARE_KEY_RE = re.compile(r"([{,]|^)(\s*)([A-Za-z_][A-Za-z0-9_]*)\s*:", re.MULTILINE)
_MISCASED_KEYS = {
    "Options": "options",
    "Status": "status",
    "Content": "content",
    "Title": "title",
    "SegmentTitle": "segmentTitle",
}
_DOUBLED_KEY_QUOTES_RE = re.compile(r'"([^"]+)""\s*:')
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")


def normalize_quotes(text: str) -> str:
    text = _SQ_OPEN_RE.sub(r'\1"', text)
    return _SQ_CLOSE_RE.sub(r'"\1', text)


def quote_bare_keys(text: str) -> str:
    return _BARE_KEY_RE.sub(r'\1\2"\3":', text)


def fix_miscased_keys(text: str) -> str:
    for wrong, right in _MISCASED_KEYS.items():
        text = re.sub(rf'"{wrong}"\s*:', f'"{right}":', text)
    return _DOUBLED_KEY_QUOTES_RE.sub(r'"\1":', text)


def strip_trailing_commas(text: str) -> str:
    return _TRAILING_COMMA_RE.sub(r"\1", text)


def wrap_braces(text: str) -> str:
    stripped = text.strip().rstrip(",")
    if stripped.startswith("{"):
        return stripped
    return "{" + stripped + "}"


REPAIRS: tuple[Callable[[str], str], ...] = (
    normalize_quotes,
    quote_bare_keys,
    fix_miscased_keys,
    strip_trailing_commas,
    wrap_braces,
)


def repair_json(raw: str) -> str:
    """Apply every textual repair in order."""
    text = strip_fences(raw)
    candidate = extract_json_object(text)
    if candidate is not None:
        text = candidate
    for repair in REPAIRS:
        text = repair(text)
    return text


def repaired_decode(raw: str) -> Optional[dict]:
    return _loads_object(repair_json(raw))


# ---------------------------------------------------------------------------
# Stage 3: field-level salvage
# ---------------------------------------------------------------------------

_Q = r"""(["'])((?:\\.|(?!\1).)*)\1"""  # a quoted string, group 2 is the body

_TITLE_RE = re.compile(
    r"""["']?(?:segment_?title|title)["']?\s*:\s*""" + _Q, re.IGNORECASE
)
_CONTENT_BOUNDED_RE = re.compile(
    r"""["']?content["']?\s*:\s*(["'])(.*?)\1\s*(?:,\s*["']?\w+["']?\s*:|}\s*$)""",
    re.IGNORECASE | re.DOTALL,
)
_CONTENT_QUOTED_RE = re.compile(
    r"""["']?content["']?\s*:\s*""" + _Q, re.IGNORECASE | re.DOTALL
)
_CONTENT_TRUNCATED_RE = re.compile(
    r"""["']?content["']?\s*:\s*["'](.+)$""", re.IGNORECASE | re.DOTALL
)
_OPTIONS_REGION_RE = re.compile(
    r"""["']?options["']?\s*:\s*\[(.*?)\]""", re.IGNORECASE | re.DOTALL
)
_QUOTED_RE = re.compile(_Q, re.DOTALL)
_OBJECT_RE = re.compile(r"\{(.*?)\}", re.DOTALL)
_TEXT_FIELD_RE = re.compile(r"""["']?text["']?\s*:\s*""" + _Q, re.IGNORECASE | re.DOTALL)
_RISK_FIELD_RE = re.compile(r"""["']?risk["']?\s*:\s*["']?([A-Za-z]+)""", re.IGNORECASE)
_STATUS_RE = re.compile(r"""["']?status["']?\s*:\s*["']?([A-Za-z]+)""", re.IGNORECASE)


def _unescape(value: str) -> str:
    try:
        return json.loads(f'"{value}"')
    except ValueError:
        return value.replace("\\n", "\n").replace('\\"', '"').replace("\\t", "\t")


def _salvage_content(text: str) -> Optional[str]:
    for pattern in (_CONTENT_BOUNDED_RE, _CONTENT_QUOTED_RE):
        match = pattern.search(text)
        if match and match.group(2).strip():
            return _unescape(match.group(2))
    match = _CONTENT_TRUNCATED_RE.search(text)
    if match:
        # truncated output: keep what we have, minus dangling JSON punctuation
        body = match.group(1).rstrip().rstrip("}]\"',").rstrip()
        if body:
            return _unescape(body)
    return None


def _salvage_options(text: str) -> Optional[list]:
    region = _OPTIONS_REGION_RE.search(text)
    if not region:
        return None
    body = region.group(1)
    objects = _OBJECT_RE.findall(body)
    if objects:
        options = []
        for obj in objects:
            text_match = _TEXT_FIELD_RE.search(obj)
            if not text_match:
                continue
            risk_match = _RISK_FIELD_RE.search(obj)
            options.append(
                {
                    "text": _unescape(text_match.group(2)),
                    "risk": risk_match.group(1) if risk_match else None,
                }
            )
        return options
    return [_unescape(m.group(2)) for m in _QUOTED_RE.finditer(body)]


def salvage_fields(raw: str) -> dict:
    """Extract each field independently; absent fields are simply missing."""
    text = strip_fences(raw)
    found: dict[str, Any] = {}

    title = _TITLE_RE.search(text)
    if title:
        found["title"] = _unescape(title.group(2))

    content = _salvage_content(text)
    if content:
        found["content"] = content

    options = _salvage_options(text)
    if options:
        found["options"] = options

    status = _STATUS_RE.search(text)
    if status:
        found["status"] = status.group(1)

    if not found and not text.lstrip().startswith(("{", "[")):
        # plain prose answer: the whole text is the chapter
        found["content"] = text
    return found


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


def _clean(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _list(value: Any) -> list:
    return value if isinstance(value, list) else []


def _first(data: dict, keys: tuple[str, ...]) -> str:
    for key in keys:
        value = _clean(data.get(key))
        if value:
            return value
    return ""


def _normalize_option(raw: Any) -> Optional[ParsedOption]:
    if isinstance(raw, dict):
        text = _clean(raw.get("text") or raw.get("option") or raw.get("description"))
        if not text:
            return None
        risk = _clean(raw.get("risk")).upper() or DEFAULT_RISK
        return ParsedOption(text=text, risk=risk)
    text = _clean(raw)
    return ParsedOption(text=text) if text else None


def _normalize_status(raw: Any) -> SegmentStatus:
    try:
        return SegmentStatus(_clean(raw).upper())
    except ValueError:
        return SegmentStatus.ACTIVE


def normalize_segment(data: dict, is_ending: bool = False) -> ParsedSegment:
    """Apply defaults and clean-up to a decoded or salvaged payload."""
    status = _normalize_status(data.get("status"))

    options: list[ParsedOption] = []
    raw_options = data.get("options")
    if not is_ending and isinstance(raw_options, list):
        options = [o for o in map(_normalize_option, raw_options) if o is not None]
    if not is_ending and not options and status != SegmentStatus.COMPLETED:
        options = [ParsedOption(text=t) for t in DEFAULT_OPTIONS]

    items = [
        ParsedItem(name=_clean(i.get("name")), description=_clean(i.get("description")))
        for i in _list(data.get("newItems"))
        if isinstance(i, dict) and _clean(i.get("name"))
    ]
    characters = [
        ParsedCharacter(
            name=_clean(c.get("name")),
            description=_clean(c.get("description")),
            relationship=_clean(c.get("relationship")).upper() or DEFAULT_RELATIONSHIP,
        )
        for c in _list(data.get("newCharacters"))
        if isinstance(c, dict) and _clean(c.get("name"))
    ]

    return ParsedSegment(
        title=_first(data, _TITLE_KEYS),
        content=_first(data, _CONTENT_KEYS) or DEFAULT_CONTENT,
        options=options,
        status=status,
        location_context=_clean(data.get("locationContext")) or None,
        new_items=items,
        new_characters=characters,
    )


# ---------------------------------------------------------------------------
# Public entry points
# ---------------------------------------------------------------------------

DECODE_STAGES: tuple[tuple[str, Callable[[str], Optional[dict]]], ...] = (
    ("strict", strict_decode),
    ("repair", repaired_decode),
)


def decode(raw: str) -> tuple[str, dict]:
    """Run the stages in order and return ``(stage_name, payload)``."""
    if raw is None or not raw.strip():
        raise GenerationFormatError("Provider returned an empty response", raw=raw or "")

    for name, stage in DECODE_STAGES:
        data = stage(raw)
        if data is not None:
            if name != "strict":
                log.warning("Recovered provider output at stage '%s'", name)
            return name, data

    log.warning("JSON decoding failed, salvaging fields from raw text")
    return "salvage", salvage_fields(raw)


class OutputParser:
    """Parse provider text output into normalized narrative records."""

    @staticmethod
    def parse_segment(raw: str, is_ending: bool = False) -> ParsedSegment:
        stage, data = decode(raw)
        segment = normalize_segment(data, is_ending=is_ending)
        log.debug("Parsed segment via %s: %d options, status=%s",
                  stage, len(segment.options), segment.status.value)
        return segment

    @staticmethod
    def parse_summary(raw: str) -> ParsedSummary:
        stage, data = decode(raw)
        content = _first(data, ("summary", "content"))
        if not content:
            raise GenerationFormatError(
                f"Summary response had no summary text (stage={stage})", raw=raw
            )
        moments = data.get("keyMoments") or data.get("key_moments") or []
        return ParsedSummary(
            title=_clean(data.get("title")) or "Adventure Summary",
            content=content,
            key_moments=[_clean(m) for m in moments if _clean(m)] if isinstance(moments, list) else [],
            theme=_clean(data.get("theme")) or "Adventure",
        )


def parse(raw_text: str, is_ending: bool = False) -> ParsedSegment:
    """Module-level shortcut for :meth:`OutputParser.parse_segment`."""
    return OutputParser.parse_segment(raw_text, is_ending=is_ending)
