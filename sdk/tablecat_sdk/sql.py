"""
Relation-name rewriting for SQL text.

Query engines that cannot address nested namespaces see every table
under a flat name: the dotted path is collapsed into one identifier by
replacing "." with "__".

    >>> transform_relations("SELECT * FROM ns.tbl AS t")
    ['SELECT * FROM ns__tbl AS t']

The rewrite is not reversible: "a__b.c" and "a.b.c" both become
"a__b__c". Names are not escaped.
"""

from __future__ import annotations

import logging

import sqlglot
from sqlglot import exp
from sqlglot.errors import SqlglotError

from .errors import SqlParseError

logger = logging.getLogger(__name__)

NAME_SEPARATOR = "__"


def transform_name(name: str) -> str:
    """Collapse a dotted relation name into a single identifier."""
    return name.replace(".", NAME_SEPARATOR)


def _rewrite_table(node: exp.Expression) -> exp.Expression:
    # Renamed in place on transform()'s copy so the other table args survive.
    if not isinstance(node, exp.Table) or not node.name:
        return node
    parts = [part for part in (node.catalog, node.db, node.name) if part]
    node.set("this", exp.to_identifier(transform_name(".".join(parts))))
    node.set("db", None)
    node.set("catalog", None)
    return node


def transform_relations(sql: str, dialect: str | None = None) -> list[str]:
    """Rewrite every table reference in a SQL script.

    Args:
        sql: One or more SQL statements
        dialect: sqlglot dialect used to read and write the SQL

    Returns:
        One rewritten SQL string per statement

    Raises:
        SqlParseError: If the SQL cannot be tokenized or parsed
    """
    try:
        statements = sqlglot.parse(sql, read=dialect)
    except SqlglotError as e:
        raise SqlParseError(f"Cannot parse SQL: {e}", sql=sql) from e

    rewritten = [
        statement.transform(_rewrite_table).sql(dialect=dialect)
        for statement in statements
        if statement is not None
    ]
    logger.debug(f"Rewrote relations in {len(rewritten)} statement(s)")
    return rewritten
