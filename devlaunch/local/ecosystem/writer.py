import re
import json
import math
import yaml
import logging
from pathlib import Path
from typing import Any, Optional, Union

from .errors import EcosystemError
from .models import Ecosystem
from .parser import format_for_path

log = logging.getLogger(__name__)

INDENT = "  "
_IDENTIFIER = re.compile(r"[A-Za-z_$][A-Za-z0-9_$]*")
_STRING_ESCAPES = {"\\": "\\\\", "'": "\\'", "\n": "\\n", "\r": "\\r", "\t": "\\t"}


def _finite(value: float) -> float:
    if not math.isfinite(value):
        raise EcosystemError(f"Cannot write non-finite number {value!r} to an ecosystem file.")
    return value


def _js_string(value: str) -> str:
    chars = []
    for ch in value:
        if ch in _STRING_ESCAPES:
            chars.append(_STRING_ESCAPES[ch])
        elif ord(ch) < 0x20:
            chars.append(f"\\u{ord(ch):04x}")
        else:
            chars.append(ch)
    return "'" + "".join(chars) + "'"


def _js_key(key: str) -> str:
    return key if _IDENTIFIER.fullmatch(key) else _js_string(key)


def _js_value(value: Any, depth: int) -> str:
    """Renders a value as a JavaScript literal; containers span multiple lines."""
    if isinstance(value, dict):
        if not value:
            return "{}"
        pad = INDENT * (depth + 1)
        items = [f"{pad}{_js_key(str(k))}: {_js_value(v, depth + 1)}" for k, v in value.items()]
        return "{\n" + ",\n".join(items) + "\n" + INDENT * depth + "}"
    if isinstance(value, (list, tuple)):
        if not value:
            return "[]"
        pad = INDENT * (depth + 1)
        items = [f"{pad}{_js_value(v, depth + 1)}" for v in value]
        return "[\n" + ",\n".join(items) + "\n" + INDENT * depth + "]"
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    if isinstance(value, int):
        return repr(value)
    if isinstance(value, float):
        return repr(_finite(value))
    if isinstance(value, str):
        return _js_string(value)
    raise EcosystemError(f"Cannot write value of type {type(value).__name__} to an ecosystem file.")


def dump_js(ecosystem: Ecosystem) -> str:
    """Renders the ecosystem as a CommonJS module in the canonical pm2 layout."""
    return "module.exports = " + _js_value(ecosystem.to_dict(), 0) + "\n"


def dump_json(ecosystem: Ecosystem) -> str:
    try:
        return json.dumps(ecosystem.to_dict(), indent=2, ensure_ascii=False, allow_nan=False) + "\n"
    except ValueError as e:
        raise EcosystemError(f"Cannot write ecosystem as JSON: {e}") from e


def dump_yaml(ecosystem: Ecosystem) -> str:
    return yaml.safe_dump(ecosystem.to_dict(), sort_keys=False, default_flow_style=False, allow_unicode=True)


_WRITERS = {"js": dump_js, "json": dump_json, "yaml": dump_yaml}


def dump_ecosystem(ecosystem: Ecosystem, fmt: Optional[str] = None) -> str:
    """
    Serializes an ecosystem.

    :param ecosystem: The ecosystem to write.
    :param fmt: 'js', 'json' or 'yaml'; defaults to the format it was read from.
    :return: The file content.
    """
    fmt = fmt or ecosystem.fmt
    if fmt not in _WRITERS:
        raise EcosystemError(f"Unknown ecosystem format '{fmt}'.")
    return _WRITERS[fmt](ecosystem)


def save_ecosystem(ecosystem: Ecosystem, path: Union[str, Path]) -> Path:
    """
    Atomically writes an ecosystem file, choosing the format by suffix.

    :param ecosystem: The ecosystem to write.
    :param path: Destination path.
    :return: The path written.
    """
    path = Path(path)
    content = dump_ecosystem(ecosystem, format_for_path(path))
    temp_path = path.with_name(path.name + ".tmp")
    try:
        temp_path.write_text(content, encoding="utf-8")
        temp_path.replace(path)
    except OSError as e:
        raise EcosystemError(f"Failed to write ecosystem file '{path}': {e}") from e
    finally:
        temp_path.unlink(missing_ok=True)
    log.info(f"Wrote {len(ecosystem)} app(s) to '{path}'.")
    return path
