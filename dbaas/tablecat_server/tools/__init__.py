"""
Command-line tools for tablecat.

- schema_cli: Schema diff, compatibility check, conversion, projection
  and SQL relation rewriting
"""
