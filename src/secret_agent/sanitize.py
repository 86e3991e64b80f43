"""
Output redaction.

Every secret used by an invocation is searched for in the captured bytes as:

- the raw value
- standard and URL-safe base64, padded or not
- percent-encoding (with and without '/' escaped, upper or lower hex) and
  form-encoding (space as '+')
- each line of a multi-line value (PEM blocks printed line by line)

and replaced by [REDACTED:NAME]. The scan works on raw bytes, left to right,
taking the longest pattern that matches at each position.
"""

import base64
import re
from typing import Dict, List, Mapping, Union
from urllib.parse import quote_from_bytes, quote_plus

MARKER = "[REDACTED:{name}]"

# Shorter lines of a multi-line secret are too likely to be ordinary output
MIN_LINE_LENGTH = 4

_PERCENT_HEX = re.compile(rb"%[0-9A-F]{2}")

Buffer = Union[bytes, bytearray]


def redaction_marker(name: str) -> bytes:
    return MARKER.format(name=name).encode("utf-8")


def _lower_hex(form: bytes) -> bytes:
    return _PERCENT_HEX.sub(lambda m: m.group(0).lower(), form)


def encoded_forms(value: bytes) -> List[bytes]:
    """Re-encodings of a value that differ from the raw bytes."""
    b64 = base64.b64encode(value)
    urlsafe = base64.urlsafe_b64encode(value)
    percent = [
        quote_from_bytes(value, safe="").encode("ascii"),
        quote_from_bytes(value).encode("ascii"),  # default safe="/"
        quote_plus(value, safe="").encode("ascii"),
    ]
    candidates = [b64, urlsafe, b64.rstrip(b"="), urlsafe.rstrip(b"=")]
    candidates += percent + [_lower_hex(p) for p in percent]

    forms = []
    for form in candidates:
        if form and form != value and form not in forms:
            forms.append(form)
    return forms


def line_forms(value: bytes) -> List[bytes]:
    """Individual lines of a multi-line value."""
    if b"\n" not in value:
        return []
    lines = []
    for line in value.split(b"\n"):
        line = line.rstrip(b"\r")
        if len(line) >= MIN_LINE_LENGTH and line != value:
            lines.append(line)
    return lines


class Sanitizer:
    """Redacts a fixed set of secret bindings from any number of buffers."""

    def __init__(self, bindings: Mapping[str, Buffer]):
        patterns: Dict[bytes, str] = {}
        values = {name: bytes(value) for name, value in sorted(bindings.items()) if value}

        # Raw values claim a pattern before another secret's encodings do
        for name, value in values.items():
            patterns.setdefault(value, name)
        for name, value in values.items():
            for form in encoded_forms(value) + line_forms(value):
                patterns.setdefault(form, name)

        self._markers = {pattern: redaction_marker(name) for pattern, name in patterns.items()}

        # Alternation tries patterns in order, so longest first gives longest match
        ordered = sorted(patterns, key=len, reverse=True)
        self._regex = re.compile(b"|".join(re.escape(p) for p in ordered)) if ordered else None

    def sanitize(self, data: bytes) -> bytes:
        if self._regex is None or not data:
            return data
        return self._regex.sub(lambda m: self._markers[m.group(0)], data)


def sanitize(data: bytes, bindings: Mapping[str, Buffer]) -> bytes:
    """Redact every binding from data."""
    return Sanitizer(bindings).sanitize(data)
