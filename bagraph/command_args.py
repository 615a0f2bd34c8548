"""Declarative command-line options in the ``-name value`` style.

Options are declared with :meth:`CommandArgs.param`; the type of the option
follows from the type of its default. Boolean options take no value and
toggle their default when given. Positional arguments are declared with
:meth:`CommandArgs.param_left_over`.
"""

from __future__ import annotations

import re
import sys
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Sequence

_INT_MIN = -(2**31)
_INT_MAX = 2**31 - 1

_STREAM_INT = re.compile(r"\s*([+-]?\d+)")
_STREAM_FLOAT = re.compile(r"\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")
_STRTOL = re.compile(r"\s*([+-]?\d+)")
_STRTOD = re.compile(
    r"\s*([+-]?(?:(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?|inf(?:inity)?|nan))",
    re.IGNORECASE,
)

_RULE = "-------------------------------------------"


class CommandArgsError(ValueError):
    """Raised when the command line cannot be parsed.

    ``usage`` holds the help text when the error calls for showing it.
    """

    def __init__(self, message: str, usage: str | None = None) -> None:
        super().__init__(message)
        self.usage = usage


class HelpRequested(Exception):
    """Raised when ``-help`` or ``-h`` is given; ``text`` holds the help."""

    def __init__(self, text: str) -> None:
        super().__init__(text)
        self.text = text


class _Kind(Enum):
    DOUBLE = "<double>"
    INT = "<int>"
    STRING = "<string>"
    BOOL = "<bool>"
    INT_LIST = "<vector_int>"
    FLOAT_LIST = "<vector_double>"


@dataclass
class _Argument:
    name: str
    description: str
    kind: _Kind
    value: Any
    parsed: bool = False
    optional: bool = False


def _first_token(text: str) -> str:
    tokens = text.split()
    if not tokens:
        raise ValueError("no value in input")
    return tokens[0]


def _parse_list(text: str, pattern: re.Pattern[str], convert) -> list:
    token = _first_token(text)
    values = []
    pos = 0
    while pos < len(token):
        match = pattern.match(token, pos)
        if match is None:
            break
        values.append(convert(match.group(1)))
        # Skip the single separator character that follows each value.
        pos = match.end() + 1
    return values


def parse_int_list(text: str) -> list[int]:
    """Parse integers separated by any single character, e.g. ``"1,2,3"``.

    Only the first whitespace-delimited word is read; parsing stops at the
    first position that does not start an integer. Raises ValueError when
    the text holds no word at all.
    """
    return _parse_list(text, _STRTOL, int)


def parse_float_list(text: str) -> list[float]:
    """Parse floats separated by any single character, e.g. ``"1.5;2"``.

    Only the first whitespace-delimited word is read; parsing stops at the
    first position that does not start a number. Raises ValueError when the
    text holds no word at all.
    """
    return _parse_list(text, _STRTOD, float)


def format_int_list(values: Iterable[int]) -> str:
    """Join integers with commas."""
    return ",".join(str(v) for v in values)


def format_float_list(values: Iterable[float]) -> str:
    """Join floats with semicolons, each in ``%g`` form."""
    return ";".join(f"{v:g}" for v in values)


def _parse_stream_int(text: str) -> int:
    match = _STREAM_INT.match(text)
    if match is None:
        raise ValueError(f"not an integer: {text!r}")
    value = int(match.group(1))
    if not _INT_MIN <= value <= _INT_MAX:
        raise ValueError(f"integer out of range: {text!r}")
    return value


def _parse_stream_float(text: str) -> float:
    match = _STREAM_FLOAT.match(text)
    if match is None:
        raise ValueError(f"not a number: {text!r}")
    return float(match.group(1))


def _parse_stream_bool(text: str) -> bool:
    value = _parse_stream_int(text)
    if value not in (0, 1):
        raise ValueError(f"not a boolean: {text!r}")
    return bool(value)


_CONVERTERS = {
    _Kind.DOUBLE: _parse_stream_float,
    _Kind.INT: _parse_stream_int,
    _Kind.BOOL: _parse_stream_bool,
    _Kind.STRING: str,
    _Kind.INT_LIST: parse_int_list,
    _Kind.FLOAT_LIST: parse_float_list,
}


def _kind_of(default: Any) -> tuple[_Kind, Any]:
    if isinstance(default, bool):
        return _Kind.BOOL, default
    if isinstance(default, int):
        return _Kind.INT, default
    if isinstance(default, float):
        return _Kind.DOUBLE, default
    if isinstance(default, str):
        return _Kind.STRING, default
    if isinstance(default, (list, tuple)):
        items = list(default)
        if items and all(isinstance(v, int) and not isinstance(v, bool) for v in items):
            return _Kind.INT_LIST, items
        return _Kind.FLOAT_LIST, [float(v) for v in items]
    raise TypeError(f"unsupported parameter type: {type(default).__name__}")


def _format_value(argument: _Argument) -> str:
    value = argument.value
    if argument.kind is _Kind.DOUBLE:
        return f"{value:g}"
    if argument.kind is _Kind.BOOL:
        return "1" if value else "0"
    if argument.kind is _Kind.INT_LIST:
        return format_int_list(value)
    if argument.kind is _Kind.FLOAT_LIST:
        return format_float_list(value)
    return str(value)


class CommandArgs:
    """A set of declared options and positional arguments."""

    def __init__(self, banner: str = "") -> None:
        self.banner = banner
        self.prog = ""
        self._args: list[_Argument] = []
        self._left_overs: list[_Argument] = []
        self._left_overs_optional: list[_Argument] = []

    def param(self, name: str, default: Any, description: str = "") -> None:
        """Declare an option; its type is that of ``default``.

        A list default of integers makes an integer-list option; any other
        list default makes a float-list option.
        """
        kind, value = _kind_of(default)
        self._args.append(_Argument(name, description, kind, value))

    def param_left_over(
        self, name: str, default: str = "", description: str = "", optional: bool = False
    ) -> None:
        """Declare a positional argument, required unless ``optional``."""
        argument = _Argument(name, description, _Kind.STRING, default, optional=optional)
        if optional:
            self._left_overs_optional.append(argument)
        else:
            self._left_overs.append(argument)

    def _find(self, name: str) -> _Argument | None:
        return next((a for a in self._args if a.name == name), None)

    def parse_args(self, argv: Sequence[str] | None = None) -> None:
        """Parse ``argv``, whose first element is the program name.

        Raises HelpRequested for ``-help``/``-h`` and CommandArgsError for an
        unknown option, a missing value or missing positional arguments.
        """
        if argv is None:
            argv = sys.argv
        args = list(argv)
        self.prog = args[0] if args else ""

        i = 1
        while i < len(args):
            name = args[i]
            if not name.startswith("-"):
                break
            if name == "--":
                i += 1
                break
            stripped = name.lstrip("-")
            if stripped:
                name = stripped

            if name in ("help", "h"):
                raise HelpRequested(self.help_text())

            argument = self._find(name)
            if argument is None:
                raise CommandArgsError(
                    f"Unknown Option '{name}' (use -help to get list of options)."
                )
            if argument.kind is _Kind.BOOL:
                if not argument.parsed:
                    argument.value = not argument.value
            else:
                if i >= len(args) - 1:
                    raise CommandArgsError(
                        f"Argument {name} needs value.", usage=self.help_text()
                    )
                i += 1
                try:
                    argument.value = _CONVERTERS[argument.kind](args[i])
                except ValueError:
                    pass  # an unconvertible value leaves the previous one
            argument.parsed = True
            i += 1

        remaining = args[i:]
        if len(self._left_overs) > len(remaining):
            raise CommandArgsError("program requires parameters", usage=self.help_text())
        for argument, value in zip(self._left_overs, remaining):
            argument.value = value
        remaining = remaining[len(self._left_overs):]
        for argument, value in zip(self._left_overs_optional, remaining):
            argument.value = value

    def help_text(self) -> str:
        """Return the usage and option table."""
        parts: list[str] = []
        if self.banner:
            parts.append(self.banner + "\n")
        usage = f"Usage: {self.prog}" + (" [options] " if self._args else " ")
        usage += " ".join(a.name for a in self._left_overs)
        if self._left_overs_optional:
            if self._left_overs:
                usage += " "
            usage += " ".join(f"[{a.name}]" for a in self._left_overs_optional)
        parts.append(usage + "\n\n")
        parts.append("General options:\n")
        parts.append(_RULE + "\n")
        parts.append("-help / -h           Displays this help.\n\n")

        if self._args:
            parts.append("Program Options:\n")
            parts.append(_RULE + "\n")
            rows = []
            for argument in self._args:
                if argument.kind is _Kind.BOOL:
                    rows.append((argument.name, argument.description))
                    continue
                label = f"{argument.name} {argument.kind.value}"
                default = _format_value(argument)
                if default:
                    rows.append((label, f"{argument.description} (default: {default})"))
                else:
                    rows.append((label, argument.description))
            width = max(len(label) for label, _ in rows) + 3
            for label, text in sorted(rows, key=lambda row: row[0]):
                parts.append(f"-{label.ljust(width)}{text}\n")
        return "".join(parts)

    def parsed_param(self, name: str) -> bool:
        """Return whether the option ``name`` was given on the command line."""
        argument = self._find(name)
        return argument.parsed if argument is not None else False

    def __getitem__(self, name: str) -> Any:
        for argument in (*self._args, *self._left_overs, *self._left_overs_optional):
            if argument.name == name:
                return argument.value
        raise KeyError(name)