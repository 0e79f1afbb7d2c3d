# Copyright 2020-present Kensho Technologies, LLC.
"""Data types of the native Datalog query language, and their EDN text representation.

Native queries are plain immutable data: Python tuples stand for EDN vectors, ListForm objects
for EDN lists (function calls and rule clauses such as "(or ...)"), and Symbol and Keyword
objects for the corresponding EDN scalars. Nothing in a native query refers to in-process objects,
so it can always be rendered to EDN text and handed to the store.
"""
from dataclasses import dataclass
import datetime
import decimal
import json
import math
from typing import Any, Mapping, Tuple, Union
import uuid

from .exceptions import CompilationInvariantError


LONG_MIN_VALUE = -(2 ** 63)
LONG_MAX_VALUE = 2 ** 63 - 1


@dataclass(frozen=True, order=True)
class Symbol:
    """An EDN symbol, e.g. a logic variable "?artist" or a function name "get-else"."""

    name: str

    def __post_init__(self) -> None:
        """Validate fields."""
        if not self.name or any(character.isspace() for character in self.name):
            raise AssertionError(f"Invalid symbol name: {repr(self.name)}")

    def __str__(self) -> str:
        """Return the EDN representation of the symbol."""
        return self.name

    @property
    def is_logic_variable(self) -> bool:
        """Return True if the symbol is a Datalog logic variable."""
        return self.name.startswith("?")


@dataclass(frozen=True, order=True)
class Keyword:
    """An EDN keyword, stored without its leading colon, e.g. "artist/name"."""

    name: str

    def __post_init__(self) -> None:
        """Validate fields."""
        if (
            not self.name
            or self.name.startswith(":")
            or any(character.isspace() for character in self.name)
        ):
            raise AssertionError(f"Invalid keyword name: {repr(self.name)}")

    @classmethod
    def from_string(cls, value: str) -> "Keyword":
        """Create a Keyword from its textual form, with or without the leading colon."""
        return cls(keyword_name(value))

    @property
    def namespace(self) -> str:
        """Return the namespace part of the keyword, or the empty string if it has none."""
        namespace, separator, _ = self.name.rpartition("/")
        return namespace if separator else ""

    @property
    def local_name(self) -> str:
        """Return the name part of the keyword, without its namespace."""
        return self.name.rpartition("/")[2]

    def __str__(self) -> str:
        """Return the EDN representation of the keyword."""
        return ":" + self.name


@dataclass(frozen=True)
class ListForm:
    """An EDN list, as opposed to a vector. Lists are how Datalog spells calls and rules."""

    items: Tuple[Any, ...]

    @classmethod
    def of(cls, *items: Any) -> "ListForm":
        """Create a ListForm holding the given items."""
        return cls(tuple(items))


@dataclass(frozen=True)
class PullExpression:
    """A find-clause pull expression, fetching the given attributes of an entity variable."""

    variable: Symbol
    attributes: Tuple[Keyword, ...]

    def to_list_form(self) -> ListForm:
        """Return the "(pull ?e [...])" list form of this expression."""
        return ListForm.of(Symbol("pull"), self.variable, self.attributes)


EdnValue = Union[Symbol, Keyword, ListForm, PullExpression, Tuple[Any, ...], Any]


def keyword_name(value: Union[str, Keyword]) -> str:
    """Return the name of a keyword given as a Keyword or as a string, without the leading colon."""
    if isinstance(value, Keyword):
        return value.name
    if not isinstance(value, str):
        raise AssertionError(f"Expected a keyword or a string, got: {type(value)} {value}")
    return value[1:] if value.startswith(":") else value


def _render_instant(value: datetime.datetime) -> str:
    """Represent a datetime as an EDN #inst literal, with millisecond precision, in UTC."""
    if value.tzinfo is not None:
        value = value.astimezone(datetime.timezone.utc)
    milliseconds = value.microsecond // 1000
    return '#inst "{}.{:03d}-00:00"'.format(value.strftime("%Y-%m-%dT%H:%M:%S"), milliseconds)


def _render_float(value: float) -> str:
    """Represent a float in EDN, including the symbolic values for infinities and NaN."""
    if math.isnan(value):
        return "##NaN"
    if math.isinf(value):
        return "##Inf" if value > 0 else "##-Inf"
    return repr(value)


def _render_integer(value: int) -> str:
    """Represent an integer in EDN, marking arbitrary-precision integers with the N suffix."""
    if LONG_MIN_VALUE <= value <= LONG_MAX_VALUE:
        return str(value)
    return f"{value}N"


def render_edn(value: EdnValue) -> str:
    """Return the EDN text representation of the given native query data."""
    # bool must be checked before int, since bool is a subclass of int.
    if isinstance(value, bool):
        return "true" if value else "false"
    elif value is None:
        return "nil"
    elif isinstance(value, (Symbol, Keyword)):
        return str(value)
    elif isinstance(value, ListForm):
        return "(" + " ".join(render_edn(item) for item in value.items) + ")"
    elif isinstance(value, PullExpression):
        return render_edn(value.to_list_form())
    elif isinstance(value, int):
        return _render_integer(value)
    elif isinstance(value, float):
        return _render_float(value)
    elif isinstance(value, decimal.Decimal):
        return f"{value}M"
    elif isinstance(value, str):
        # JSON string escaping is a subset of what the EDN reader accepts.
        return json.dumps(value, ensure_ascii=False)
    elif isinstance(value, datetime.datetime):
        return _render_instant(value)
    elif isinstance(value, uuid.UUID):
        return f'#uuid "{value}"'
    elif isinstance(value, (tuple, list)):
        return "[" + " ".join(render_edn(item) for item in value) + "]"
    elif isinstance(value, (set, frozenset)):
        # Sort the elements for deterministic output order.
        return "#{" + " ".join(sorted(render_edn(item) for item in value)) + "}"
    elif isinstance(value, Mapping):
        pairs = (
            "{} {}".format(render_edn(key), render_edn(item_value))
            for key, item_value in value.items()
        )
        return "{" + ", ".join(pairs) + "}"
    else:
        raise CompilationInvariantError(
            f"Native query data must consist of EDN-representable values only, but found "
            f"{repr(value)} of type {type(value).__name__}."
        )
