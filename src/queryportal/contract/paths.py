from __future__ import annotations

import re
from typing import Iterable, Mapping, Union
from urllib.parse import quote

from queryportal.common.errors import ContractError

_PARAM_ANGLE = re.compile(r"<([A-Za-z_][A-Za-z0-9_]*)>")
_PARAM_BRACKET = re.compile(r"\[([A-Za-z_][A-Za-z0-9_]*)\]")
_PARAM_COLON = re.compile(r":([A-Za-z_][A-Za-z0-9_]*)")
_PARAM_BRACE = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")
_MULTI_SLASH = re.compile(r"/{2,}")

API_PREFIX = "api"


def split_path(path: Union[str, Iterable[str]]) -> tuple[str, ...]:
    """Split a path string or segment list into normalized segments.

    Placeholder styles ``<id>``, ``[id]`` and ``:id`` become ``{id}``.
    """
    if isinstance(path, str):
        raw = path.split("/")
    else:
        raw = []
        for seg in path:
            raw.extend(str(seg).split("/"))

    segments: list[str] = []
    for seg in raw:
        seg = seg.strip()
        if not seg:
            continue
        seg = _PARAM_ANGLE.sub(r"{\1}", seg)     # <id> -> {id}
        seg = _PARAM_BRACKET.sub(r"{\1}", seg)   # [id] -> {id}
        seg = _PARAM_COLON.sub(r"{\1}", seg)     # :id  -> {id}
        segments.append(seg)
    return tuple(segments)


def with_api_prefix(segments: tuple[str, ...]) -> tuple[str, ...]:
    if segments and segments[0] == API_PREFIX:
        return segments
    return (API_PREFIX, *segments)


def to_template(segments: Iterable[str]) -> str:
    p = "/" + "/".join(segments)
    return _MULTI_SLASH.sub("/", p)


def normalize_path(path: Union[str, Iterable[str]]) -> str:
    """Return the canonical ``/api/...`` template for any accepted path form."""
    return to_template(with_api_prefix(split_path(path)))


def placeholders(segments: Iterable[str]) -> tuple[str, ...]:
    names: list[str] = []
    for seg in segments:
        names.extend(_PARAM_BRACE.findall(seg))
    return tuple(names)


def operation_id(method: str, segments: Iterable[str]) -> str:
    # GET /api/v1/menu/{item_id} -> get_api_v1_menu_by_item_id
    tokens = []
    for seg in segments:
        found = _PARAM_BRACE.fullmatch(seg)
        if found:
            tokens.append(f"by_{found.group(1)}")
        else:
            tokens.append(re.sub(r"[^a-zA-Z0-9_]+", "_", seg).strip("_").lower())
    base = "_".join(t for t in tokens if t) or "root"
    return f"{method.lower()}_{base}"


def fill_template(template: str, values: Mapping[str, object]) -> str:
    """Substitute ``{name}`` placeholders; a missing value is a ContractError."""

    def _sub(match: re.Match) -> str:
        name = match.group(1)
        if name not in values or values[name] is None:
            raise ContractError(f"Unresolved path placeholder '{name}' in {template}")
        return quote(str(values[name]), safe="")

    return _PARAM_BRACE.sub(_sub, template)
