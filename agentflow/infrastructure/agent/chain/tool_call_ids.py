"""Tool call ID templates.

A template mixes literal text with random segments written as
``{r:<length>:<charset>}``, e.g. ``call_{r:24:x}``. Providers use different ID
formats, so restored chains rewrite IDs that do not match the active template.
"""

import re
import secrets

DEFAULT_TOOL_CALL_ID_TEMPLATE = "call_{r:24:x}"

_DIGIT = "0123456789"
_LOWER = "abcdefghijklmnopqrstuvwxyz"
_UPPER = _LOWER.upper()

CHARSETS: dict[str, str] = {
    "d": _DIGIT,
    "digit": _DIGIT,
    "l": _LOWER,
    "lower": _LOWER,
    "u": _UPPER,
    "upper": _UPPER,
    "a": _LOWER + _UPPER,
    "alpha": _LOWER + _UPPER,
    "x": _DIGIT + _LOWER + _UPPER,
    "alnum": _DIGIT + _LOWER + _UPPER,
    "h": "0123456789abcdef",
    "hex": "0123456789abcdef",
    "H": "0123456789ABCDEF",
    "HEX": "0123456789ABCDEF",
    "b": _DIGIT + _UPPER + _LOWER,
    "base62": _DIGIT + _UPPER + _LOWER,
}

_SEGMENT = re.compile(r"\{r:(\d+):(" + "|".join(sorted(CHARSETS, key=len, reverse=True)) + r")\}")


def _parse(template: str) -> list[str | tuple[int, str]]:
    parts: list[str | tuple[int, str]] = []
    pos = 0
    for match in _SEGMENT.finditer(template):
        if match.start() > pos:
            parts.append(template[pos : match.start()])
        parts.append((int(match.group(1)), CHARSETS[match.group(2)]))
        pos = match.end()
    if pos < len(template):
        parts.append(template[pos:])
    return parts


def generate_tool_call_id(template: str = DEFAULT_TOOL_CALL_ID_TEMPLATE) -> str:
    """Generate a new ID from a template."""
    out = []
    for part in _parse(template):
        if isinstance(part, str):
            out.append(part)
        else:
            length, charset = part
            out.append("".join(secrets.choice(charset) for _ in range(length)))
    return "".join(out)


def matches_tool_call_id(template: str, value: str) -> bool:
    """Return True if an existing ID could have been produced by the template."""
    pattern = []
    for part in _parse(template):
        if isinstance(part, str):
            pattern.append(re.escape(part))
        else:
            length, charset = part
            pattern.append(f"[{re.escape(charset)}]{{{length}}}")
    return re.fullmatch("".join(pattern), value) is not None
