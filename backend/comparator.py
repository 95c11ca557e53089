"""Output normalization and comparison used by every judge path."""
import re
from typing import Optional

from config import LANGUAGES

_NEWLINES = re.compile(r"\r\n|\r")
_NEWLINE_RUNS = re.compile(r"\n+")
_WHITESPACE_RUNS = re.compile(r"\s+")


def normalize(text: Optional[str]) -> str:
    """Canonicalize line endings and whitespace, then trim."""
    if not text:
        return ""
    text = _NEWLINES.sub("\n", str(text).strip())
    text = _NEWLINE_RUNS.sub("\n", text)
    text = _WHITESPACE_RUNS.sub(" ", text)
    return text.strip()


def _as_number(text: str) -> Optional[float]:
    try:
        return float(text)
    except ValueError:
        return None


def compare(actual: Optional[str], expected: Optional[str]) -> bool:
    """Decide whether actual output matches expected output.

    Tries, in order: emptiness, exact match after normalization, numeric
    equality ("8" vs "8.0"), then a line-by-line match that ignores blank
    lines and surrounding whitespace on each line.
    """
    if not actual and not expected:
        return True
    if not actual or not expected:
        return False

    normalized_actual = normalize(actual)
    normalized_expected = normalize(expected)
    if normalized_actual == normalized_expected:
        return True

    actual_num = _as_number(normalized_actual)
    expected_num = _as_number(normalized_expected)
    if actual_num is not None and expected_num is not None:
        return actual_num == expected_num

    actual_lines = [line.strip() for line in normalized_actual.split("\n") if line.strip()]
    expected_lines = [line.strip() for line in normalized_expected.split("\n") if line.strip()]
    if len(actual_lines) != len(expected_lines):
        return False
    return all(a == e for a, e in zip(actual_lines, expected_lines))


def strip_comments(code: str, language: str) -> str:
    """Remove comments so placeholder-only submissions can be detected."""
    for pattern in LANGUAGES.get(language, {}).get("comments", []):
        code = re.sub(pattern, "", code)
    return code.strip()
