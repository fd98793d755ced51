"""
authz.query
~~~~~~~~~~~
The root field of a GraphQL document, with its arguments resolved.

Only the top level is read: the operation header is skipped, the single
root selection is parsed, and each argument is evaluated against the
request variables (``id: $x`` reads ``variables["x"]``, inline literals are
taken as written).  Policy decisions are made on those values, never on the
raw variables map, so a variable the field does not bind cannot steer the
check.

Documents the policy cannot reason about are refused:

    multiple_root_fields   more than one field in the root selection set
    unsupported_query      fragment spreads at the root, several
                           definitions, or anything that does not tokenize
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

_TOKEN = re.compile(
    r"""
     (?P<skip>[\s,\ufeff]+|\#[^\n\r]*)
    |(?P<block>\"\"\"(?:\\\"\"\"|(?!\"\"\")[\s\S])*\"\"\")
    |(?P<string>"(?:\\.|[^"\\\n\r])*")
    |(?P<spread>\.\.\.)
    |(?P<punct>[!$&():=@\[\]{|}])
    |(?P<number>-?\d+(?:\.\d+)?(?:[eE][+-]?\d+)?)
    |(?P<name>[_A-Za-z][_0-9A-Za-z]*)
    """,
    re.VERBOSE,
)

Token = Tuple[str, str]


class QueryError(Exception):
    def __init__(self, reason: str, detail: str = ""):
        self.reason = reason
        super().__init__(f"{reason}: {detail}" if detail else reason)


@dataclass(frozen=True)
class RootField:
    name: str
    alias: Optional[str] = None
    arguments: Dict[str, Any] = field(default_factory=dict)


def tokenize(query: str) -> List[Token]:
    tokens: List[Token] = []
    pos = 0
    while pos < len(query):
        match = _TOKEN.match(query, pos)
        if match is None:
            raise QueryError("unsupported_query", f"unexpected character at {pos}")
        kind = match.lastgroup
        if kind != "skip":
            tokens.append((kind, match.group()))
        pos = match.end()
    return tokens


def parse_root_field(query: str | None, variables: Dict[str, Any] | None = None) -> Optional[RootField]:
    """``None`` when the document has no selection set yet (subscription handshake)."""
    if not query or not query.strip():
        return None
    return _Parser(tokenize(query), variables if isinstance(variables, dict) else {}).document()


class _Parser:
    def __init__(self, tokens: List[Token], variables: Dict[str, Any]):
        self.tokens = tokens
        self.variables = variables
        self.i = 0

    # ------------------------------------------------------------------ #
    # document
    # ------------------------------------------------------------------ #

    def document(self) -> Optional[RootField]:
        if self._peek() == ("name", "fragment"):
            raise QueryError("unsupported_query", "fragment definition")

        # operation type, name, variable definitions, directives
        while self._peek() is not None and not self._at("{"):
            if self._at("("):
                self._skip_balanced("(", ")")
            else:
                self.i += 1
        if self._peek() is None:
            return None

        self._expect("{")
        fields: List[RootField] = []
        while not self._at("}"):
            if self._peek() is None:
                raise QueryError("unsupported_query", "unterminated selection set")
            if self._peek()[0] == "spread":
                raise QueryError("unsupported_query", "fragment at root")
            fields.append(self._field())
        self._expect("}")

        if self._peek() is not None:
            raise QueryError("unsupported_query", "more than one definition")
        if not fields:
            raise QueryError("unsupported_query", "empty selection set")
        if len(fields) > 1:
            raise QueryError("multiple_root_fields", ", ".join(f.alias or f.name for f in fields))
        return fields[0]

    def _field(self) -> RootField:
        name, alias = self._name(), None
        if self._at(":"):
            self.i += 1
            alias, name = name, self._name()

        arguments: Dict[str, Any] = {}
        if self._at("("):
            self.i += 1
            while not self._at(")"):
                key = self._name()
                self._expect(":")
                arguments[key] = self._value()
            self.i += 1

        while self._at("@"):
            self.i += 1
            self._name()
            if self._at("("):
                self._skip_balanced("(", ")")
        if self._at("{"):
            self._skip_balanced("{", "}")
        return RootField(name=name, alias=alias, arguments=arguments)

    # ------------------------------------------------------------------ #
    # values
    # ------------------------------------------------------------------ #

    def _value(self) -> Any:
        kind, text = self._take()
        if kind == "punct" and text == "$":
            return self.variables.get(self._name())
        if kind == "string":
            try:
                return json.loads(text)
            except json.JSONDecodeError as e:
                raise QueryError("unsupported_query", "bad string literal") from e
        if kind == "block":
            return text[3:-3]
        if kind == "number":
            return float(text) if any(c in text for c in ".eE") else int(text)
        if kind == "name":
            return {"true": True, "false": False, "null": None}.get(text, text)
        if text == "[":
            items = []
            while not self._at("]"):
                items.append(self._value())
            self.i += 1
            return items
        if text == "{":
            obj = {}
            while not self._at("}"):
                key = self._name()
                self._expect(":")
                obj[key] = self._value()
            self.i += 1
            return obj
        raise QueryError("unsupported_query", f"unexpected {text!r}")

    # ------------------------------------------------------------------ #
    # tokens
    # ------------------------------------------------------------------ #

    def _peek(self) -> Optional[Token]:
        return self.tokens[self.i] if self.i < len(self.tokens) else None

    def _at(self, punct: str) -> bool:
        return self._peek() == ("punct", punct)

    def _take(self) -> Token:
        token = self._peek()
        if token is None:
            raise QueryError("unsupported_query", "unexpected end of document")
        self.i += 1
        return token

    def _expect(self, punct: str) -> None:
        if self._take() != ("punct", punct):
            raise QueryError("unsupported_query", f"expected {punct!r}")

    def _name(self) -> str:
        kind, text = self._take()
        if kind != "name":
            raise QueryError("unsupported_query", f"expected a name, got {text!r}")
        return text

    def _skip_balanced(self, open_: str, close: str) -> None:
        depth = 0
        while True:
            token = self._take()
            if token == ("punct", open_):
                depth += 1
            elif token == ("punct", close):
                depth -= 1
                if depth == 0:
                    return
