"""Structural SQL policy checks for agent tool calls.

The engine lexes a query just far enough to find statement keywords, nesting
depth, comments and command chaining, then decides whether a tool with a given
intent may run it.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional, Sequence

__all__ = [
    "ToolIntent",
    "AuthorizedSubqueryShape",
    "SubqueryPolicy",
    "ToolContract",
    "AuthorizationContext",
    "PolicyContext",
    "PolicyDecision",
    "PolicyPlugin",
    "evaluate",
    "evaluate_with_context",
    "evaluate_with_plugins",
]

_TRANSACTION_KEYWORDS = (
    "BEGIN",
    "START",
    "COMMIT",
    "ROLLBACK",
    "SAVEPOINT",
    "RELEASE",
    "TRANSACTION",
)
_DDL_KEYWORDS = ("CREATE", "ALTER", "DROP", "TRUNCATE", "RENAME")
_WRITE_KEYWORDS = ("INSERT", "UPDATE", "DELETE", "MERGE", "UPSERT", "REPLACE")
_ADMIN_KEYWORDS = (
    "ATTACH",
    "DETACH",
    "PRAGMA",
    "EXPLAIN",
    "VACUUM",
    "CALL",
    "GRANT",
    "REVOKE",
)
_SET_OPERATION_KEYWORDS = ("UNION", "INTERSECT", "EXCEPT")
_STATEMENT_KEYWORDS = (
    "SELECT",
    "INSERT",
    "UPDATE",
    "DELETE",
    "MERGE",
    "UPSERT",
    "REPLACE",
    "CREATE",
    "ALTER",
    "DROP",
    "TRUNCATE",
    "BEGIN",
    "START",
    "COMMIT",
    "ROLLBACK",
    "SAVEPOINT",
    "RELEASE",
    "PRAGMA",
    "ATTACH",
    "DETACH",
    "EXPLAIN",
    "VACUUM",
    "CALL",
)
_RESERVED_RELATION_TOKENS = frozenset(
    {
        "SELECT",
        "WHERE",
        "ON",
        "GROUP",
        "ORDER",
        "LIMIT",
        "OFFSET",
        "INNER",
        "LEFT",
        "RIGHT",
        "FULL",
        "CROSS",
        "UNION",
        "INTERSECT",
        "EXCEPT",
    }
)

_ASCII_LOWER = str.maketrans(
    "ABCDEFGHIJKLMNOPQRSTUVWXYZ", "abcdefghijklmnopqrstuvwxyz"
)


class ToolIntent(Enum):
    """What kind of SQL a tool is meant to run."""

    READ_SELECT = "read-select"
    WRITE_INSERT = "write-insert"
    WRITE_UPDATE = "write-update"
    WRITE_DELETE = "write-delete"
    ADMIN = "admin"


@dataclass(frozen=True)
class AuthorizedSubqueryShape:
    """A table that nested subqueries are allowed to read from."""

    table: str


@dataclass(frozen=True)
class SubqueryPolicy:
    """Either deny all nested subqueries or allow those over listed tables.

    ``shapes`` is ``None`` for deny-all; otherwise it is the allow-list.
    """

    shapes: Optional[tuple[AuthorizedSubqueryShape, ...]] = None

    @classmethod
    def deny_all(cls) -> "SubqueryPolicy":
        return cls(None)

    @classmethod
    def allow_listed(cls, shapes: Iterable[AuthorizedSubqueryShape]) -> "SubqueryPolicy":
        return cls(tuple(shapes))

    @property
    def denies_all(self) -> bool:
        return self.shapes is None


@dataclass
class ToolContract:
    name: str
    intent: ToolIntent
    subquery_policy: SubqueryPolicy = field(default_factory=SubqueryPolicy.deny_all)


@dataclass
class AuthorizationContext:
    allowed_intents: list[ToolIntent]
    grants: list[str] = field(default_factory=list)

    def allows_intent(self, intent: ToolIntent) -> bool:
        return intent in self.allowed_intents


@dataclass
class PolicyContext:
    tool: ToolContract
    authorization: AuthorizationContext

    @classmethod
    def for_intent(cls, intent: ToolIntent) -> "PolicyContext":
        """A context whose default tool is authorised for exactly ``intent``."""
        return cls(
            tool=ToolContract(f"default-{intent.value}", intent),
            authorization=AuthorizationContext(allowed_intents=[intent]),
        )


@dataclass(frozen=True)
class PolicyDecision:
    allowed: bool
    classification: str
    reason: Optional[str] = None


class PolicyPlugin(ABC):
    """Extra, deny-only analysis run after the base engine has allowed a query.

    Return ``None`` to abstain. A decision with ``allowed`` true also counts as
    abstaining; only a denying decision changes the outcome.
    """

    @abstractmethod
    def analyze(self, query: str, context: PolicyContext) -> Optional[PolicyDecision]:
        ...


# ── lexing ────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class _Token:
    word: str
    depth: int


@dataclass
class _LexAnalysis:
    tokens: list[_Token] = field(default_factory=list)
    has_line_comment: bool = False
    has_block_comment: bool = False
    has_semicolon: bool = False


_LEXER = re.compile(
    r"""
      (?P<line_comment>--[^\n]*)
    | (?P<block_comment>/\*.*?(?:\*/|\Z))
    | (?P<literal>'(?:''|[^'])*'?)
    | "(?P<dquote>(?:""|[^"])*)"?
    | `(?P<bquote>(?:``|[^`])*)`?
    | \[(?P<bracket>(?:\]\]|[^\]])*)\]?
    | (?P<semicolon>;)
    | (?P<dot>\.)
    | (?P<open>\()
    | (?P<close>\))
    | (?P<word>[A-Za-z_][A-Za-z0-9_]*)
    | (?P<other>.)
    """,
    re.VERBOSE | re.DOTALL,
)

_QUOTE_UNESCAPES = {"dquote": ('""', '"'), "bquote": ("``", "`"), "bracket": ("]]", "]")}


def _lex_sql(query: str) -> _LexAnalysis:
    analysis = _LexAnalysis()
    depth = 0
    for match in _LEXER.finditer(query):
        kind = match.lastgroup
        if kind == "line_comment":
            analysis.has_line_comment = True
        elif kind == "block_comment":
            analysis.has_block_comment = True
        elif kind in _QUOTE_UNESCAPES:
            escaped, plain = _QUOTE_UNESCAPES[kind]
            identifier = match.group(kind).replace(escaped, plain).strip()
            if identifier:
                analysis.tokens.append(_Token(identifier.upper(), depth))
        elif kind == "semicolon":
            analysis.has_semicolon = True
        elif kind == "dot":
            analysis.tokens.append(_Token(".", depth))
        elif kind == "open":
            depth += 1
        elif kind == "close":
            depth = max(depth - 1, 0)
        elif kind == "word":
            analysis.tokens.append(_Token(match.group().upper(), depth))
    return analysis


@dataclass
class _SqlAnalysis:
    normalized_query: str
    tokens: list[_Token]
    main_statement: Optional[str]
    has_nested_select: bool
    nested_select_tables: list[str]
    has_line_comment: bool
    has_block_comment: bool
    has_semicolon: bool

    @classmethod
    def analyze(cls, query: str) -> "_SqlAnalysis":
        lex = _lex_sql(query)
        return cls(
            normalized_query=query.upper(),
            tokens=lex.tokens,
            main_statement=_find_keyword(
                (t for t in lex.tokens if t.depth == 0), _STATEMENT_KEYWORDS
            ),
            has_nested_select=any(
                t.depth > 0 and t.word == "SELECT" for t in lex.tokens
            ),
            nested_select_tables=_extract_nested_select_tables(lex.tokens),
            has_line_comment=lex.has_line_comment,
            has_block_comment=lex.has_block_comment,
            has_semicolon=lex.has_semicolon,
        )


def _find_keyword(tokens: Iterable[_Token], keywords: Sequence[str]) -> Optional[str]:
    return next((t.word for t in tokens if t.word in keywords), None)


def _extract_nested_select_tables(tokens: list[_Token]) -> list[str]:
    tables: list[str] = []
    for index, token in enumerate(tokens):
        if token.depth == 0 or token.word not in ("FROM", "JOIN"):
            continue
        name = _extract_relation_name(tokens[index + 1 :], token.depth)
        if name is not None and name not in tables:
            tables.append(name)
    return tables


def _extract_relation_name(tokens: Iterable[_Token], depth: int) -> Optional[str]:
    segments: list[str] = []
    saw_start = False
    expect_qualified = False

    for token in tokens:
        if token.depth != depth:
            if saw_start:
                break
            continue
        if token.word == ".":
            if saw_start:
                expect_qualified = True
            continue
        if token.word in _RESERVED_RELATION_TOKENS:
            if not saw_start:
                continue
            break
        if not saw_start or expect_qualified:
            segments.append(token.word.lower())
            saw_start = True
            expect_qualified = False
            continue
        break

    return segments[-1] if segments else None


# ── decisions ─────────────────────────────────────────────────────────────────


def _allow(classification: str) -> PolicyDecision:
    return PolicyDecision(True, classification, None)


def _deny(classification: str, reason: str) -> PolicyDecision:
    return PolicyDecision(False, classification, reason)


def _detect_injection_heuristics(normalized: str) -> Optional[str]:
    if " OR '" in normalized and "'1'='1" in normalized:
        return "Suspected boolean-based SQL injection detected"
    if ' OR "' in normalized and '"1"="1' in normalized:
        return "Suspected boolean-based SQL injection detected"
    if "SLEEP(" in normalized or "WAITFOR" in normalized:
        return "Time-based SQL injection pattern detected"
    return None


def _evaluate_subquery_policy(
    analysis: _SqlAnalysis, policy: SubqueryPolicy
) -> Optional[PolicyDecision]:
    if not analysis.has_nested_select:
        return None
    if policy.shapes is None:
        return _deny("subquery", "Nested subquery is not allowed for read-select intent")
    if not analysis.nested_select_tables:
        return _deny(
            "subquery",
            "Nested subquery could not be classified against the tool allow-list",
        )
    allowed = {shape.table.translate(_ASCII_LOWER) for shape in policy.shapes}
    for table in analysis.nested_select_tables:
        if table.translate(_ASCII_LOWER) not in allowed:
            return _deny(
                "subquery",
                f"Nested subquery references table '{table}' which is not "
                "allow-listed for this tool",
            )
    return None


def _enforce_read_select(
    analysis: _SqlAnalysis, policy: SubqueryPolicy
) -> PolicyDecision:
    tokens = analysis.tokens

    keyword = _find_keyword(tokens, _TRANSACTION_KEYWORDS)
    if keyword:
        return _deny(
            "transaction",
            "Transaction control is not allowed for read-select intent: "
            f"{keyword.lower()}",
        )

    keyword = _find_keyword(tokens, _DDL_KEYWORDS)
    if keyword:
        return _deny(
            "ddl", f"DDL is not allowed for read-select intent: {keyword.lower()}"
        )

    keyword = _find_keyword(tokens, _WRITE_KEYWORDS)
    if keyword:
        return _deny(
            f"write-{keyword.lower()}",
            "DML write operation is not allowed for read-select intent: "
            f"{keyword.lower()}",
        )

    keyword = _find_keyword(tokens, _ADMIN_KEYWORDS)
    if keyword:
        return _deny(
            "admin",
            "Administrative SQL is not allowed for read-select intent: "
            f"{keyword.lower()}",
        )

    keyword = _find_keyword(tokens, _SET_OPERATION_KEYWORDS)
    if keyword:
        return _deny(
            "set-operation",
            f"Set operations are not allowed for read-select intent: {keyword.lower()}",
        )

    if _find_keyword((t for t in tokens if t.depth == 0), ("FROM",)) is None:
        return _deny("invalid", "SELECT statements must include a FROM clause")

    decision = _evaluate_subquery_policy(analysis, policy)
    if decision is not None:
        return decision

    main = analysis.main_statement
    if main == "SELECT":
        return _allow("read-select")
    if main is not None:
        return _deny(
            main.lower(),
            "Tool intent read-select only allows SELECT statements, "
            f"found {main.lower()}",
        )
    return _deny("unknown", "Unable to classify SQL statement intent")


def evaluate(query: str, intent: ToolIntent) -> PolicyDecision:
    """Evaluate ``query`` for a default tool authorised for ``intent``."""
    return evaluate_with_context(query, PolicyContext.for_intent(intent))


def evaluate_with_context(query: str, context: PolicyContext) -> PolicyDecision:
    """Evaluate ``query`` against a tool contract and its authorisation."""
    trimmed = query.strip()
    if not trimmed:
        return _deny("invalid", "Query is empty")

    intent = context.tool.intent
    if not context.authorization.allows_intent(intent):
        return _deny(
            "unauthorized",
            f"Tool contract intent '{intent.value}' is not authorized by the "
            "supplied policy context",
        )

    analysis = _SqlAnalysis.analyze(trimmed)

    if analysis.has_line_comment:
        return _deny("invalid", "SQL line comments are not allowed")
    if analysis.has_block_comment:
        return _deny("invalid", "SQL block comments are not allowed")
    if analysis.has_semicolon:
        return _deny("invalid", "Semicolon-based command chaining is not allowed")

    reason = _detect_injection_heuristics(analysis.normalized_query)
    if reason is not None:
        return _deny("invalid", reason)

    if intent is ToolIntent.READ_SELECT:
        return _enforce_read_select(analysis, context.tool.subquery_policy)
    if intent is ToolIntent.ADMIN:
        return _deny(
            "unsupported",
            "Administrative SQL intents are not supported by this runtime",
        )
    return _deny(
        "unsupported",
        "Only read-select intent is currently supported by this runtime",
    )


def evaluate_with_plugins(
    query: str, context: PolicyContext, plugins: Iterable[PolicyPlugin]
) -> PolicyDecision:
    """Run the base engine, then let plugins veto an allowed query.

    The first plugin returning a denying decision wins; plugins are not
    consulted when the base engine already denies.
    """
    base = evaluate_with_context(query, context)
    if not base.allowed:
        return base
    for plugin in plugins:
        decision = plugin.analyze(query, context)
        if decision is not None and not decision.allowed:
            return decision
    return base