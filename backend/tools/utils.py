"""
Shared tool helpers: output sanitization, size limits and fuzzy catalog matching.

Every tool result passes through sanitize_and_validate_tool_result before
the model sees it:

1. Strings are NFKC-normalized, stripped of zero-width characters, HTML
   tags and code fences, and prompt-injection phrases are replaced with a
   "[filtered: ...]" marker.
2. The serialized result is checked against MAX_TOOL_RESULT_SIZE. Oversized
   lists are shrunk to 80% repeatedly, then the longest strings are cut
   until the result fits, and a _meta truncation marker is added.
"""

import copy
import json
import logging
import re
import unicodedata
from typing import Any, Dict, List, Tuple

logger = logging.getLogger(__name__)

MAX_TOOL_RESULT_SIZE = 24_000
MAX_SEARCH_RESULTS = 10
MAX_RECOMMENDATIONS = 10
MAX_ACTIVE_CONTROL_TRACKS = 50
DEFAULT_ACTIVE_CONTROL_LIMIT = 20

SHRINK_FACTOR = 0.8
TRUNCATION_MARKER = "... [truncated]"

INJECTION_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"(?:^|\n)\s*system\s*:\s*",
        r"\b(ignore|forget)\s+(all\s+)?(previous\s+)?(instructions?|prompts?|rules?)",
        r"\byou\s+(are|must|should)\s+now\b",
        r"(?:^|\n)\s*new\s+instructions?\s*:",
        r"\bdeveloper\s+message\b",
        r"\b(system|developer|assistant)\s+prompt\b",
        r"\b(begin|end)\s+(system|developer|assistant|prompt)\b",
        r"<<+\s*(system|developer|assistant)\s*>>+",
        r"\b(act|behave|respond)\s+as\s+(if\s+you\s+are|a)\b",
        r"(?:^|\n)\s*role\s*:\s*",
        r"(?:^|\n)\s*assistant\s*:\s*",
        r"```+\s*(system|assistant|user)",
        r"</?(?:system|assistant|user)>",
        r"(?:^|\n)\s*execute\s*:\s*",
        r"\brun\s+command\b",
    )
]

_ZERO_WIDTH = re.compile(r"[\u200b-\u200f\u2028-\u202f\ufeff]")
_HTML_TAG = re.compile(r"<[^>]*>")
_CODE_BLOCK = re.compile(r"```[\s\S]*?```")
_BACKTICKS = re.compile(r"`{1,3}")
_NON_WORD = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")
_COMBINING_MARKS = re.compile(r"[\u0300-\u036f]")


def _filtered_marker(match: re.Match) -> str:
    text = match.group(0)
    prefix = "\n" if text.startswith("\n") else ""
    cleaned = _WHITESPACE.sub(" ", _NON_WORD.sub("", text).strip())
    return f"{prefix}[filtered: {cleaned}]"


def sanitize_text(value: str) -> str:
    """Neutralize markup and prompt-injection phrases in tool-visible text."""
    text = _ZERO_WIDTH.sub("", unicodedata.normalize("NFKC", value))
    text = _HTML_TAG.sub("", text)
    text = _CODE_BLOCK.sub("[filtered code block]", text)
    text = _BACKTICKS.sub("", text)
    for pattern in INJECTION_PATTERNS:
        text = pattern.sub(_filtered_marker, text)
    return text


def sanitize_input_query(query: str, max_length: int = 200) -> str:
    return sanitize_text(query[:max_length].strip())


def sanitize_tool_output(value: Any) -> Any:
    """Recursively sanitize every string in a JSON-like structure."""
    if isinstance(value, str):
        return sanitize_text(value)
    if isinstance(value, list):
        return [sanitize_tool_output(item) for item in value]
    if isinstance(value, dict):
        return {key: sanitize_tool_output(item) for key, item in value.items()}
    return value


def serialized_size(value: Any) -> int:
    """Length of the compact JSON form."""
    return len(json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str))


def _string_leaves(value: Any, path: Tuple = ()):
    if isinstance(value, str):
        yield path, value
    elif isinstance(value, list):
        for index, item in enumerate(value):
            yield from _string_leaves(item, path + (index,))
    elif isinstance(value, dict):
        for key, item in value.items():
            if key != "_meta":
                yield from _string_leaves(item, path + (key,))


def _replace_leaf(value: Any, path: Tuple, text: str) -> Any:
    if not path:
        return text
    container = value
    for step in path[:-1]:
        container = container[step]
    container[path[-1]] = text
    return value


def _truncate_strings(value: Any) -> Any:
    """Cut the longest strings, marking each cut, until the value fits."""
    value = copy.deepcopy(value)
    while True:
        overflow = serialized_size(value) - MAX_TOOL_RESULT_SIZE
        if overflow <= 0:
            return value
        leaves = list(_string_leaves(value))
        if not leaves:
            return value
        path, text = max(leaves, key=lambda leaf: len(leaf[1]))
        if len(text) <= len(TRUNCATION_MARKER):
            return value
        keep = max(0, len(text) - overflow - len(TRUNCATION_MARKER))
        value = _replace_leaf(value, path, text[:keep] + TRUNCATION_MARKER)


def validate_tool_result_size(result: Any, tool_name: str) -> Tuple[Any, bool]:
    """Shrink oversized results. Returns (result, truncated).

    Lists are cut first; whatever is still over the limit has its longest
    strings truncated. Containers carry a _meta marker, bare strings end
    with TRUNCATION_MARKER.
    """
    size = serialized_size(result)
    if size <= MAX_TOOL_RESULT_SIZE:
        return result, False

    logger.warning(f"Tool result exceeds size limit: {tool_name} ({size} > {MAX_TOOL_RESULT_SIZE})")
    meta = {"truncated": True, "originalSize": size}

    if isinstance(result, list):
        items = list(result)
        while serialized_size(items) > MAX_TOOL_RESULT_SIZE and len(items) > 1:
            items = items[: int(len(items) * SHRINK_FACTOR)]
        return _truncate_strings({"items": items, "_meta": meta}), True

    if isinstance(result, dict):
        shrunk = dict(result)
        for key in list(shrunk.keys()):
            if not isinstance(shrunk[key], list):
                continue
            items = list(shrunk[key])
            while serialized_size(shrunk) > MAX_TOOL_RESULT_SIZE and len(items) > 1:
                items = items[: int(len(items) * SHRINK_FACTOR)]
                shrunk[key] = items
        shrunk["_meta"] = meta
        return _truncate_strings(shrunk), True

    return _truncate_strings(result), True


def sanitize_and_validate_tool_result(result: Any, tool_name: str) -> Any:
    sanitized = sanitize_tool_output(result)
    validated, _ = validate_tool_result_size(sanitized, tool_name)
    return validated


# =============================================================================
# FUZZY CATALOG MATCHING
# =============================================================================


def normalize_catalog_text(value: str) -> str:
    """Strip accents, lowercase and collapse whitespace."""
    text = _COMBINING_MARKS.sub("", unicodedata.normalize("NFD", value))
    return _WHITESPACE.sub(" ", text.lower()).strip()


def levenshtein_distance(a: str, b: str) -> int:
    if not a:
        return len(b)
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, 1):
        current = [i]
        for j, char_b in enumerate(b, 1):
            cost = 0 if char_a == char_b else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def string_similarity(a: str, b: str) -> float:
    """1.0 for identical strings, 0.0 for entirely different ones."""
    normal_a = normalize_catalog_text(a)
    normal_b = normalize_catalog_text(b)
    max_length = max(len(normal_a), len(normal_b))
    if max_length == 0:
        return 1.0
    return 1 - levenshtein_distance(normal_a, normal_b) / max_length


def fuzzy_match(query: str, target: str, threshold: float = 0.7) -> bool:
    normal_query = normalize_catalog_text(query)
    normal_target = normalize_catalog_text(target)

    if normal_query in normal_target:
        return True

    query_words = [w for w in normal_query.split(" ") if w]
    target_words = [w for w in normal_target.split(" ") if w]
    if all(
        any(qw in tw or string_similarity(qw, tw) >= threshold for tw in target_words)
        for qw in query_words
    ):
        return True

    return string_similarity(normal_query, normal_target) >= threshold


def top_counts(values: List[str], limit: int) -> List[str]:
    """Most frequent values first, ties in first-seen order."""
    counts: Dict[str, int] = {}
    for value in values:
        counts[value] = counts.get(value, 0) + 1
    return [value for value, _ in sorted(counts.items(), key=lambda item: -item[1])[:limit]]
