"""Label and value text helpers shared by the batcher and the serializer."""
import math
import re
from typing import Any, Mapping, Tuple

_INVALID_NAME_CHARS = re.compile(r"[^A-Za-z0-9_]")

# Single-pass substitution tables; str.translate never revisits its output.
_LABEL_VALUE_ESCAPES = str.maketrans({"\\": "\\\\", '"': '\\"', "\n": "\\n"})
_HELP_ESCAPES = str.maketrans({"\\": "\\\\", "\n": "\\n"})

Fingerprint = Tuple[Tuple[str, str], ...]


def sanitize_label_key(key: Any) -> str:
    """Replace every character outside [A-Za-z0-9_] with an underscore."""
    return _INVALID_NAME_CHARS.sub("_", str(key))


def sanitize_metric_name(name: str) -> str:
    """Metric names follow the same character rules as label keys."""
    return _INVALID_NAME_CHARS.sub("_", name)


def format_value(value: Any) -> str:
    """
    Render a sample value the way the exposition format expects.

    Integers (and integral floats) print without a decimal point, other
    finite floats print their shortest round-trip representation, and
    non-finite values use the NaN/+Inf/-Inf tokens.
    """
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, int):
        return str(value)

    value = float(value)
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if value.is_integer() and abs(value) < 1e21:
        return str(int(value))
    return repr(value)


def label_value_str(value: Any) -> str:
    """Coerce an arbitrary label value to its display string."""
    if isinstance(value, str):
        return value
    if value is None:
        return "undefined"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return format_value(value)
    return str(value)


def escape_label_value(value: Any) -> str:
    """Escape backslash, double quote and line feed in a label value."""
    return label_value_str(value).translate(_LABEL_VALUE_ESCAPES)


def escape_help(text: str) -> str:
    """Escape backslash and line feed in HELP text."""
    return text.translate(_HELP_ESCAPES)


def label_fingerprint(labels: Mapping[Any, Any]) -> Fingerprint:
    """
    Generate a stable series identity from sorted, sanitized labels.

    When several keys sanitize to the same name only the first one counts,
    matching what gets rendered.
    """
    pairs = {}
    for key, value in labels.items():
        pairs.setdefault(sanitize_label_key(key), label_value_str(value))
    return tuple(sorted(pairs.items()))
