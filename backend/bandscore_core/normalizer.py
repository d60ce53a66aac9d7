import re
from typing import Any, List

_WHITESPACE = re.compile(r"\s+")

TRUE_FALSE_SYNONYMS = {
    "t": "true",
    "f": "false",
    "ng": "not given",
    "notgiven": "not given",
}

# legacy clients post {"selected": "B"} and friends instead of the bare value
WRAPPER_KEYS = ("selected", "answer", "value", "letter", "choice")


def unwrap(value: Any) -> Any:
    if isinstance(value, dict) and value.get("type") != "simple_table":
        for key in WRAPPER_KEYS:
            if key in value:
                return value[key]
    return value


def normalize_text(value: Any) -> str:
    """Lower-case, trim and collapse whitespace runs. None becomes ''."""
    if value is None:
        return ""
    if isinstance(value, bool):
        value = "true" if value else "false"
    return _WHITESPACE.sub(" ", str(value).lower()).strip()


def normalize_true_false(value: Any) -> str:
    norm = normalize_text(value)
    return TRUE_FALSE_SYNONYMS.get(norm, norm)


def normalize_letters(value: Any) -> List[str]:
    """Letters of a selection given as 'A|C' or ['A', 'C'], de-duplicated in order."""
    value = unwrap(value)
    if isinstance(value, (list, tuple)):
        parts = [normalize_text(unwrap(v)) for v in value]
    elif value is None or isinstance(value, dict):
        parts = []
    else:
        parts = [normalize_text(p) for p in str(value).split("|")]
    seen = []
    for p in parts:
        if p and p not in seen:
            seen.append(p)
    return seen
