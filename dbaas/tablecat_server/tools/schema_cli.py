"""
Schema CLI tool for tablecat.

This tool works on schema JSON files offline:
- diff: Show differences between two schemas
- check: Verify a schema can evolve from a baseline
- convert: Rewrite a schema as format version 1 or 2
- project: Keep a subset of top-level field ids
- rewrite-sql: Collapse dotted relation names in SQL

Usage:
    tablecat-schema diff --old schema.v1.json --new schema.v2.json
    tablecat-schema check --baseline schema.lock.json --schema schema.json
    tablecat-schema convert --input schema.json --to v2
    tablecat-schema project --input schema.json --ids 1,2
    tablecat-schema rewrite-sql "SELECT * FROM ns.tbl"

Schema files hold either a bare schema object or one wrapped as
{"schema": {...}}. A missing schema-id reads as 0.

Invariants:
    - Breaking changes cause non-zero exit code
    - Output JSON is deterministic (sorted keys)

How to change safely:
    - Add new commands, don't modify existing ones
    - Keep output format stable for CI parsing
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any

from sdk.tablecat_sdk.compat import check_compatibility, generate_fingerprint
from sdk.tablecat_sdk.errors import InvalidFormatError, TableCatError
from sdk.tablecat_sdk.schema import Schema
from sdk.tablecat_sdk.sql import transform_relations
from sdk.tablecat_sdk.versions import SchemaV1, serialize_schema

logger = logging.getLogger(__name__)

_FORMAT_VERSIONS = {"v1": 1, "v2": 2}


def load_schema(path: str) -> Schema:
    """Load a schema file.

    Raises:
        InvalidFormatError: If the file does not hold a schema
    """
    with open(path) as f:
        data = json.load(f)
    if isinstance(data, dict) and isinstance(data.get("schema"), dict):
        data = data["schema"]
    if not isinstance(data, dict):
        raise InvalidFormatError(f"{path} does not contain a schema object", path=path)
    return SchemaV1.from_dict(data).to_schema()


class SchemaCLI:
    """CLI tool for schema management.

    Example:
        >>> cli = SchemaCLI()
        >>> cli.diff("schema.v1.json", "schema.v2.json")
        [{'kind': 'FIELD_ADDED', ...}]
    """

    def diff(self, old_path: str, new_path: str) -> list[dict[str, Any]]:
        """Show differences between two schemas.

        Returns:
            List of change dictionaries
        """
        changes = check_compatibility(load_schema(old_path), load_schema(new_path))
        return [change.to_dict() for change in changes]

    def check(self, baseline_path: str, schema_path: str) -> tuple[bool, list[str]]:
        """Check that a schema can evolve from a baseline.

        Returns:
            Tuple of (is_compatible, list_of_issues)
        """
        changes = check_compatibility(load_schema(baseline_path), load_schema(schema_path))
        issues = [str(change) for change in changes if change.is_breaking]
        return len(issues) == 0, issues

    def convert(self, input_path: str, to: str) -> str:
        """Serialize a schema for format version "v1" or "v2"."""
        schema = load_schema(input_path)
        return json.dumps(serialize_schema(schema, _FORMAT_VERSIONS[to]), indent=2, sort_keys=True)

    def project(self, input_path: str, ids: list[int]) -> str:
        schema = load_schema(input_path).project(ids)
        return json.dumps(schema.to_dict(), indent=2, sort_keys=True)

    def fingerprint(self, input_path: str) -> str:
        return generate_fingerprint(load_schema(input_path))

    def rewrite_sql(self, sql: str, dialect: str | None = None) -> list[str]:
        return transform_relations(sql, dialect)


def _parse_ids(value: str) -> list[int]:
    try:
        return [int(part) for part in value.split(",") if part.strip()]
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"Invalid field id list '{value}'") from e


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tablecat-schema", description="tablecat schema tool")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # diff command
    diff_parser = subparsers.add_parser("diff", help="Show differences between schemas")
    diff_parser.add_argument("--old", required=True, help="Path to old schema JSON")
    diff_parser.add_argument("--new", required=True, help="Path to new schema JSON")
    diff_parser.add_argument(
        "--format", choices=["text", "json"], default="text", help="Output format"
    )

    # check command
    check_parser = subparsers.add_parser("check", help="Check compatibility with baseline")
    check_parser.add_argument(
        "--baseline", "-b", required=True, help="Path to baseline schema JSON"
    )
    check_parser.add_argument("--schema", "-s", required=True, help="Path to proposed schema JSON")

    # convert command
    convert_parser = subparsers.add_parser("convert", help="Convert between format versions")
    convert_parser.add_argument("--input", "-i", required=True, help="Path to schema JSON")
    convert_parser.add_argument("--to", choices=sorted(_FORMAT_VERSIONS), required=True)

    # project command
    project_parser = subparsers.add_parser("project", help="Keep a subset of field ids")
    project_parser.add_argument("--input", "-i", required=True, help="Path to schema JSON")
    project_parser.add_argument("--ids", type=_parse_ids, required=True, help="Comma-separated ids")

    # fingerprint command
    fingerprint_parser = subparsers.add_parser("fingerprint", help="Print schema fingerprint")
    fingerprint_parser.add_argument("--input", "-i", required=True, help="Path to schema JSON")

    # rewrite-sql command
    sql_parser = subparsers.add_parser("rewrite-sql", help="Collapse dotted relation names")
    sql_parser.add_argument("sql", help="SQL text")
    sql_parser.add_argument("--dialect", help="sqlglot dialect")

    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for schema tool."""
    args = build_parser().parse_args(argv)
    cli = SchemaCLI()

    try:
        if args.command == "diff":
            changes = cli.diff(args.old, args.new)

            if args.format == "json":
                print(json.dumps(changes, indent=2))
            elif not changes:
                print("No changes detected")
            else:
                print(f"Found {len(changes)} change(s):")
                for change in changes:
                    status = "BREAKING" if change["is_breaking"] else "OK"
                    print(f"  [{status}] {change['kind']}: {change['path']}")
                    print(f"          {change['message']}")

            breaking = [c for c in changes if c["is_breaking"]]
            sys.exit(1 if breaking else 0)

        elif args.command == "check":
            is_compatible, issues = cli.check(args.baseline, args.schema)

            if is_compatible:
                print("Schema is compatible with baseline")
                sys.exit(0)
            print(f"Schema compatibility check FAILED with {len(issues)} breaking change(s):")
            for issue in issues:
                print(f"  - {issue}")
            sys.exit(1)

        elif args.command == "convert":
            print(cli.convert(args.input, args.to))

        elif args.command == "project":
            print(cli.project(args.input, args.ids))

        elif args.command == "fingerprint":
            print(cli.fingerprint(args.input))

        elif args.command == "rewrite-sql":
            for statement in cli.rewrite_sql(args.sql, args.dialect):
                print(statement)

    except (TableCatError, OSError, json.JSONDecodeError) as e:
        logger.debug("Schema tool failed", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
