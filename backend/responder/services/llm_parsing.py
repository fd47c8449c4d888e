"""The only place that interprets raw model text.

Models are asked for a bare JSON array but sometimes wrap it in a Markdown
fence or a sentence of prose. `parse_json_array` recovers the array or raises
`LLMParseError`; callers only ever see Python lists.
"""
import json
import re
from typing import Any, Iterator, List

_FENCE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


class LLMParseError(ValueError):
    pass


def _loads_list(candidate: str):
    try:
        value = json.loads(candidate)
    except (json.JSONDecodeError, TypeError):
        return None
    return value if isinstance(value, list) else None


def array_spans(text: str) -> Iterator[str]:
    """Yield every balanced `[...]` span in order of its opening bracket, ignoring brackets inside JSON strings."""
    start = text.find('[')
    while start != -1:
        depth = 0
        in_str = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_str:
                if escaped:
                    escaped = False
                elif ch == '\\':
                    escaped = True
                elif ch == '"':
                    in_str = False
                continue
            if ch == '"':
                in_str = True
            elif ch == '[':
                depth += 1
            elif ch == ']':
                depth -= 1
                if depth == 0:
                    yield text[start:i + 1]
                    break
        start = text.find('[', start + 1)


def extract_array_span(text: str) -> str | None:
    return next(array_spans(text), None)


def parse_json_array(text: str) -> List[Any]:
    if not isinstance(text, str) or not text.strip():
        raise LLMParseError("empty model output")
    value = _loads_list(text.strip())
    if value is not None:
        return value
    fenced = _FENCE.search(text)
    if fenced:
        value = _loads_list(fenced.group(1).strip())
        if value is not None:
            return value
    for span in array_spans(text):
        value = _loads_list(span)
        if value is not None:
            return value
    raise LLMParseError(f"no JSON array in model output: {text[:120]!r}")
