from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any, Optional

import yaml

from plang.plang_ast import Node
from plang.plang_datatypes import PLObject, to_python


# --------------------------
# Helpers
# --------------------------

def _norm_text(data: bytes | bytearray | str, *, encoding: Optional[str] = None) -> str:
    if isinstance(data, (bytes, bytearray)):
        try:
            return data.decode(encoding or 'utf-8', errors='replace')
        except LookupError:
            return data.decode('utf-8', errors='replace')
    return data


def _encoding_from_content_type(content_type: Optional[str]) -> Optional[str]:
    if not content_type:
        return None
    m = re.search(r'charset\s*=\s*([^\s;]+)', content_type, re.IGNORECASE)
    if m:
        return m.group(1).strip('"').strip("'")
    return None


def _to_builtin(obj: Any) -> Any:
    """PL values and AST nodes as plain dict/list/scalar data."""
    if isinstance(obj, Node):
        return obj.to_dict()
    if isinstance(obj, list):
        return [_to_builtin(x) for x in obj]
    if isinstance(obj, (dict, PLObject)):
        return {str(k): _to_builtin(v) for k, v in obj.items()}
    return to_python(obj)


def detect_format(content_type: Optional[str] = None, data_hint: Optional[str] = None) -> Optional[str]:
    """
    Returns a canonical format name among: 'json', 'yaml'.
    Uses Content-Type first; falls back to simple data sniffing if provided.
    """
    ct = (content_type or "").lower()
    if 'json' in ct:
        return 'json'
    if 'yaml' in ct:
        return 'yaml'
    if data_hint is not None:
        s = data_hint.lstrip()
        if s.startswith('{') or s.startswith('['):
            return 'json'
        if s:
            return 'yaml'
    return None


def format_for_path(path: Path | str) -> Optional[str]:
    suffix = Path(path).suffix.lower()
    if suffix == '.json':
        return 'json'
    if suffix in ('.yaml', '.yml'):
        return 'yaml'
    return None


# --------------------------
# Public API
# --------------------------

def deserialize(data: bytes | bytearray | str,
                *,
                content_type: Optional[str] = None,
                fmt: Optional[str] = None) -> Any:
    """
    Convert wire data (bytes/string) to native Python structures.
    Supported fmt: 'json', 'yaml'. If fmt is None, uses content_type, then sniffing.
    Raises ValueError when the text is not valid in the chosen format.
    """
    text = _norm_text(data, encoding=_encoding_from_content_type(content_type))
    f = fmt or detect_format(content_type, text)
    if f == 'json':
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON: {e}") from e
    if f == 'yaml':
        try:
            return yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML: {e}") from e
    if f is None and not text.strip():
        return None
    raise ValueError(f"Unsupported serialization format: {f!r}")


def serialize(value: Any, *, fmt: str = 'json', pretty: bool = True) -> str:
    """
    Convert a PL value, AST node or plain Python value into text.
    - fmt: 'json' | 'yaml'
    """
    f = (fmt or '').lower()
    built = _to_builtin(value)
    if f == 'json':
        return json.dumps(built, ensure_ascii=False, indent=2 if pretty else None)
    if f == 'yaml':
        return yaml.safe_dump(built, sort_keys=False, allow_unicode=True)
    raise ValueError(f"Unsupported serialization format: {fmt!r}")


__all__ = [
    "deserialize",
    "serialize",
    "detect_format",
    "format_for_path",
]
