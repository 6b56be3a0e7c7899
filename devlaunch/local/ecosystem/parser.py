"""
Readers for pm2-style ecosystem files.

The JavaScript reader understands the declarative subset these files are
written in: a single `module.exports = {...}` (or `export default {...}`)
holding object and array literals, quoted strings, numbers, booleans and
null. Anything that would require evaluating JavaScript is rejected.
"""
import json
import math
import yaml
import logging
from pathlib import Path
from typing import Any, Dict, List, Union

from .errors import EcosystemError, EcosystemSyntaxError
from .models import Ecosystem

log = logging.getLogger(__name__)

FORMAT_BY_SUFFIX = {
    ".js": "js",
    ".cjs": "js",
    ".mjs": "js",
    ".json": "json",
    ".yml": "yaml",
    ".yaml": "yaml",
}

_EXPORT_PREFIXES = ("module.exports", "export default")
_ESCAPES = {
    "n": "\n", "t": "\t", "r": "\r", "b": "\b", "f": "\f", "v": "\v",
    "0": "\0", "'": "'", '"': '"', "\\": "\\", "/": "/",
}
_KEYWORDS = {"true": True, "false": False, "null": None}


class _ObjectLiteralReader:
    """Recursive-descent reader over the object-literal subset of JavaScript."""

    def __init__(self, text: str):
        self.text = text
        self.pos = 0

    #* --- Position & Errors ---
    def _location(self, pos: int):
        line = self.text.count("\n", 0, pos) + 1
        column = pos - (self.text.rfind("\n", 0, pos) + 1) + 1
        return line, column

    def error(self, message: str, pos: int = None) -> EcosystemSyntaxError:
        line, column = self._location(self.pos if pos is None else pos)
        return EcosystemSyntaxError(message, line, column)

    def peek(self) -> str:
        return self.text[self.pos] if self.pos < len(self.text) else ""

    def skip_whitespace(self) -> None:
        """Skips whitespace and both comment styles."""
        while self.pos < len(self.text):
            ch = self.text[self.pos]
            if ch.isspace():
                self.pos += 1
            elif self.text.startswith("//", self.pos):
                end = self.text.find("\n", self.pos)
                self.pos = len(self.text) if end == -1 else end + 1
            elif self.text.startswith("/*", self.pos):
                end = self.text.find("*/", self.pos + 2)
                if end == -1:
                    raise self.error("Unterminated block comment")
                self.pos = end + 2
            else:
                break

    def expect(self, char: str) -> None:
        self.skip_whitespace()
        if self.peek() != char:
            found = self.peek() or "end of file"
            raise self.error(f"Expected '{char}' but found '{found}'")
        self.pos += 1

    #* --- Document ---
    def read_module(self) -> Any:
        """Reads `<export prefix> = <value>[;]` and returns the exported value."""
        self.skip_whitespace()
        if self.text.startswith("module.exports", self.pos):
            self.pos += len("module.exports")
            self.expect("=")
        elif self.text.startswith("export default", self.pos):
            self.pos += len("export default")
        else:
            raise self.error(f"Expected one of: {', '.join(_EXPORT_PREFIXES)}")

        value = self.read_value()
        self.skip_whitespace()
        if self.peek() == ";":
            self.pos += 1
            self.skip_whitespace()
        if self.pos != len(self.text):
            raise self.error("Unexpected content after the exported value")
        return value

    #* --- Values ---
    def read_value(self) -> Any:
        self.skip_whitespace()
        ch = self.peek()
        if ch == "{":
            return self.read_object()
        if ch == "[":
            return self.read_array()
        if ch in ("'", '"'):
            return self.read_string()
        if ch == "`":
            raise self.error("Template strings are not supported")
        if ch == "-" or ch == "+" or ch.isdigit() or ch == ".":
            return self.read_number()
        if ch.isalpha() or ch in ("_", "$"):
            start = self.pos
            word = self.read_identifier()
            if word in _KEYWORDS:
                return _KEYWORDS[word]
            raise self.error(f"Unsupported expression '{word}', only literal values are allowed", start)
        if not ch:
            raise self.error("Unexpected end of file")
        raise self.error(f"Unexpected character '{ch}'")

    def read_object(self) -> Dict[str, Any]:
        self.expect("{")
        result: Dict[str, Any] = {}
        while True:
            self.skip_whitespace()
            if self.peek() == "}":
                self.pos += 1
                return result
            key_pos = self.pos
            key = self.read_key()
            if key in result:
                raise self.error(f"Duplicate key '{key}'", key_pos)
            self.expect(":")
            result[key] = self.read_value()
            self.skip_whitespace()
            if self.peek() == ",":
                self.pos += 1
            elif self.peek() != "}":
                raise self.error("Expected ',' or '}' in object")

    def read_array(self) -> List[Any]:
        self.expect("[")
        result: List[Any] = []
        while True:
            self.skip_whitespace()
            if self.peek() == "]":
                self.pos += 1
                return result
            result.append(self.read_value())
            self.skip_whitespace()
            if self.peek() == ",":
                self.pos += 1
            elif self.peek() != "]":
                raise self.error("Expected ',' or ']' in array")

    def read_key(self) -> str:
        ch = self.peek()
        if ch in ("'", '"'):
            return self.read_string()
        if ch.isalpha() or ch in ("_", "$"):
            return self.read_identifier()
        if ch.isdigit():
            start = self.pos
            while self.peek().isdigit():
                self.pos += 1
            return self.text[start:self.pos]
        raise self.error("Expected a property name")

    def read_identifier(self) -> str:
        start = self.pos
        while self.pos < len(self.text) and (self.text[self.pos].isalnum() or self.text[self.pos] in ("_", "$")):
            self.pos += 1
        return self.text[start:self.pos]

    def read_string(self) -> str:
        quote = self.text[self.pos]
        start = self.pos
        self.pos += 1
        chars: List[str] = []
        while True:
            if self.pos >= len(self.text):
                raise self.error("Unterminated string", start)
            ch = self.text[self.pos]
            if ch == quote:
                self.pos += 1
                return "".join(chars)
            if ch == "\n":
                raise self.error("Unterminated string", start)
            if ch == "\\":
                chars.append(self.read_escape())
                continue
            chars.append(ch)
            self.pos += 1

    def read_escape(self) -> str:
        self.pos += 1  # backslash
        ch = self.peek()
        if not ch:
            raise self.error("Unterminated escape sequence")
        if ch == "\n":
            self.pos += 1
            return ""
        if ch in ("x", "u"):
            length = 2 if ch == "x" else 4
            digits = self.text[self.pos + 1:self.pos + 1 + length]
            try:
                if len(digits) != length:
                    raise ValueError(digits)
                value = chr(int(digits, 16))
            except ValueError:
                raise self.error(f"Invalid \\{ch} escape") from None
            self.pos += 1 + length
            return value
        self.pos += 1
        return _ESCAPES.get(ch, ch)

    def read_number(self) -> Union[int, float]:
        start = self.pos
        sign = -1 if self.peek() == "-" else 1
        if self.peek() in ("-", "+"):
            self.pos += 1
        if self.text.startswith(("0x", "0X"), self.pos):
            self.pos += 2
            digits_start = self.pos
            while self.peek() and self.peek() in "0123456789abcdefABCDEF":
                self.pos += 1
            if self.pos == digits_start:
                raise self.error("Invalid hexadecimal number", start)
            return sign * int(self.text[digits_start:self.pos], 16)
        while self.peek() and (self.peek().isdigit() or self.peek() in ".eE_" or (
            self.peek() in "+-" and self.text[self.pos - 1] in "eE"
        )):
            self.pos += 1
        literal = self.text[start:self.pos].replace("_", "")
        try:
            if not any(c in literal for c in ".eE"):
                return int(literal)
            value = float(literal)
        except ValueError:
            raise self.error(f"Invalid number '{literal}'", start) from None
        if not math.isfinite(value):
            raise self.error(f"Number '{literal}' is out of range", start)
        return value


def parse_js(text: str) -> Any:
    """
    Parses the text of a JavaScript ecosystem file.

    :param text: The file content.
    :return: The exported value as plain Python objects (dicts keep key order).
    :raises EcosystemSyntaxError: If the file is not a literal export.
    """
    return _ObjectLiteralReader(text).read_module()


def _finite_float(literal: str) -> float:
    value = float(literal)
    if not math.isfinite(value):
        raise EcosystemSyntaxError(f"Number '{literal}' is out of range")
    return value


def _reject_constant(name: str) -> Any:
    raise EcosystemSyntaxError(f"'{name}' is not a valid ecosystem value")


def parse_json(text: str) -> Any:
    try:
        return json.loads(text, parse_float=_finite_float, parse_constant=_reject_constant)
    except json.JSONDecodeError as e:
        raise EcosystemSyntaxError(e.msg, e.lineno, e.colno) from e


def parse_yaml(text: str) -> Any:
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as e:
        mark = getattr(e, "problem_mark", None)
        if mark is not None:
            raise EcosystemSyntaxError(str(getattr(e, "problem", e)), mark.line + 1, mark.column + 1) from e
        raise EcosystemSyntaxError(str(e)) from e


_PARSERS = {"js": parse_js, "json": parse_json, "yaml": parse_yaml}


def format_for_path(path: Path) -> str:
    """Returns the ecosystem format implied by a file name."""
    fmt = FORMAT_BY_SUFFIX.get(path.suffix.lower())
    if fmt is None:
        raise EcosystemError(
            f"Unsupported ecosystem file type '{path.suffix}'. "
            f"Expected one of: {', '.join(sorted(FORMAT_BY_SUFFIX))}"
        )
    return fmt


def loads_ecosystem(text: str, fmt: str = "js", source: Path = None) -> Ecosystem:
    """
    Parses ecosystem text in the given format and validates its apps.

    :param text: The file content.
    :param fmt: One of 'js', 'json' or 'yaml'.
    :param source: Optional path the text was read from, kept on the result.
    :return: The parsed Ecosystem.
    """
    if fmt not in _PARSERS:
        raise EcosystemError(f"Unknown ecosystem format '{fmt}'.")
    data = _PARSERS[fmt](text)
    return Ecosystem.from_dict(data, source=source, fmt=fmt)


def load_ecosystem(path: Union[str, Path]) -> Ecosystem:
    """
    Reads and parses an ecosystem file, choosing the reader by suffix.

    :param path: Path to a .js/.cjs/.mjs, .json, .yml or .yaml file.
    :return: The parsed Ecosystem.
    :raises EcosystemError: If the file is missing, unreadable or invalid.
    """
    path = Path(path)
    fmt = format_for_path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise EcosystemError(f"Cannot read ecosystem file '{path}': {e}") from e

    ecosystem = loads_ecosystem(text, fmt, source=path)
    log.debug(f"Loaded {len(ecosystem)} app(s) from '{path}': {', '.join(ecosystem.names)}")
    return ecosystem
