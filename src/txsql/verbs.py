"""
SQL verb classification.

The transaction orchestrator aggregates results by verb without the caller
declaring it: SELECT rows are collected, INSERT/UPDATE/DELETE counts are
summed. :func:`classify` is a best-effort sniffer, and anything it does not
recognise is :attr:`Verb.OTHER`, which executes but aggregates nothing.

Examples:
    >>> classify("-- refresh\\nUPDATE t SET x = 1")
    <Verb.UPDATE: 'UPDATE'>
    >>> classify("WITH t AS (SELECT id FROM s) UPDATE target SET x = 1 FROM t")
    <Verb.UPDATE: 'UPDATE'>
    >>> classify("CREATE TABLE t (id int)")
    <Verb.OTHER: 'OTHER'>
"""

from __future__ import annotations

import re
from enum import Enum


class Verb(str, Enum):
    SELECT = "SELECT"
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    OTHER = "OTHER"


_COMMENT_RE = re.compile(
    r"('(?:[^']|'')*'|\"(?:[^\"]|\"\")*\")|--[^\n]*|/\*.*?\*/",
    re.DOTALL,
)
_TOKEN_RE = re.compile(r"'(?:[^']|'')*'|\"(?:[^\"]|\"\")*\"|[()]|[A-Za-z_]\w*")
_LEADING_RE = re.compile(r"^(SELECT|INSERT|UPDATE|DELETE|WITH)\b", re.IGNORECASE)
_DML = frozenset({"SELECT", "INSERT", "UPDATE", "DELETE"})


def strip_comments(sql: str) -> str:
    """Remove ``--`` and ``/* */`` comments, leaving string literals intact."""
    return _COMMENT_RE.sub(lambda match: match.group(1) or " ", sql)


def _main_verb_after_ctes(sql: str) -> Verb:
    # The governing statement is the first DML keyword at parenthesis depth 0;
    # everything nested belongs to a CTE body.
    depth = 0
    for match in _TOKEN_RE.finditer(sql):
        token = match.group(0)
        if token == "(":
            depth += 1
        elif token == ")":
            depth = max(depth - 1, 0)
        elif depth == 0 and token.upper() in _DML:
            return Verb(token.upper())
    return Verb.OTHER


def classify(sql: str) -> Verb:
    """Verb governing ``sql`` for result aggregation."""
    text = strip_comments(sql).lstrip(" \t\r\n(")
    match = _LEADING_RE.match(text)
    if match is None:
        return Verb.OTHER
    keyword = match.group(1).upper()
    if keyword == "WITH":
        return _main_verb_after_ctes(text[match.end() :])
    return Verb(keyword)


__all__ = ["Verb", "classify", "strip_comments"]
