"""
HTTP server implementation for tablecat.

This module provides the REST catalog API over a CatalogTransport
(normally the InMemoryCatalog):
- POST /v1/namespaces                         create namespace
- GET  /v1/namespaces                         list namespaces
- GET  /v1/namespaces/{ns}/tables             list tables
- POST /v1/namespaces/{ns}/tables             create table
- GET  /v1/namespaces/{ns}/tables/{table}     load table
- POST /v1/namespaces/{ns}/tables/{table}     commit requirements + updates
- GET  /health                                health check

Invariants:
    - Errors are returned as {"error": {"message", "type", "code"}}
    - A failed requirement is a 409 naming the requirement type
    - An invalid update is a 400 and nothing is applied

How to change safely:
    - Keep routes in sync with sdk/tablecat_sdk/rest.py
    - Version the API if breaking changes are needed
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from sdk.tablecat_sdk.catalog import CatalogTransport, LoadedTable, TableIdentifier
from sdk.tablecat_sdk.errors import (
    AlreadyExistsError,
    CommitConflictError,
    InvalidFormatError,
    NotFoundError,
    TableCatError,
)
from sdk.tablecat_sdk.requirements import TableRequirement
from sdk.tablecat_sdk.schema import Schema
from sdk.tablecat_sdk.updates import TableUpdate

from ..config import ServerSettings

logger = logging.getLogger(__name__)

NAMESPACE_SEPARATOR = "\x1f"

_ERROR_STATUS = (
    (CommitConflictError, 409),
    (AlreadyExistsError, 409),
    (NotFoundError, 404),
    (InvalidFormatError, 400),
)


# --- Request Models ---


class CreateNamespaceRequest(BaseModel):
    """Request to create a namespace."""

    namespace: list[str] = Field(..., min_length=1, description="Namespace levels")
    properties: dict[str, str] = Field(default_factory=dict, description="Namespace properties")


class CreateTableRequest(BaseModel):
    """Request to create a table."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., description="Table name")
    table_schema: dict[str, Any] = Field(..., alias="schema", description="Schema JSON object")
    location: str | None = Field(None, description="Table location")
    properties: dict[str, str] = Field(default_factory=dict, description="Table properties")
    format_version: int = Field(2, alias="format-version", description="Metadata format version")


class TableIdentifierModel(BaseModel):
    namespace: list[str]
    name: str


class CommitTableRequest(BaseModel):
    """Request to commit requirements and updates to a table."""

    identifier: TableIdentifierModel | None = None
    requirements: list[dict[str, Any]] = Field(default_factory=list)
    updates: list[dict[str, Any]] = Field(default_factory=list)


# --- Helpers ---


def parse_namespace(value: str) -> tuple[str, ...]:
    return tuple(value.split(NAMESPACE_SEPARATOR))


def load_table_result(table: LoadedTable) -> dict[str, Any]:
    return {
        "metadata-location": table.metadata_location,
        "metadata": table.metadata.to_dict(),
    }


def error_response(error: TableCatError) -> JSONResponse:
    status = next((code for cls, code in _ERROR_STATUS if isinstance(error, cls)), 500)
    body: dict[str, Any] = {
        "message": error.message,
        "type": type(error).__name__,
        "code": error.code,
    }
    if isinstance(error, CommitConflictError):
        body["requirement"] = error.requirement
    return JSONResponse({"error": body}, status_code=status)


def get_catalog(request: Request) -> CatalogTransport:
    return request.app.state.catalog


# --- Application ---


def create_app(catalog: CatalogTransport, settings: ServerSettings | None = None) -> FastAPI:
    """Create the REST catalog application.

    Args:
        catalog: Catalog backend holding the authoritative table state
        settings: Server settings (defaults to environment)

    Returns:
        FastAPI application
    """
    settings = settings or ServerSettings()

    app = FastAPI(
        title="tablecat",
        description="REST catalog for table-format metadata.",
        version="1.0.0",
    )
    app.state.catalog = catalog
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.exception_handler(TableCatError)
    async def handle_tablecat_error(request: Request, exc: TableCatError) -> JSONResponse:
        if isinstance(exc, CommitConflictError):
            logger.info(f"{request.method} {request.url.path} conflicted: {exc.message}")
        elif not isinstance(exc, (NotFoundError, AlreadyExistsError, InvalidFormatError)):
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return error_response(exc)

    @app.get("/health")
    async def health():
        return {"status": "healthy", "service": "tablecat"}

    @app.post("/v1/namespaces")
    async def create_namespace(body: CreateNamespaceRequest, request: Request):
        await get_catalog(request).create_namespace(tuple(body.namespace), body.properties)
        return {"namespace": body.namespace, "properties": body.properties}

    @app.get("/v1/namespaces")
    async def list_namespaces(request: Request):
        catalog = get_catalog(request)
        namespaces = await catalog.list_namespaces()  # type: ignore[attr-defined]
        return {"namespaces": [list(ns) for ns in namespaces]}

    @app.get("/v1/namespaces/{namespace}/tables")
    async def list_tables(namespace: str, request: Request):
        identifiers = await get_catalog(request).list_tables(parse_namespace(namespace))
        return {
            "identifiers": [
                {"namespace": list(i.namespace), "name": i.name} for i in identifiers
            ]
        }

    @app.post("/v1/namespaces/{namespace}/tables")
    async def create_table(namespace: str, body: CreateTableRequest, request: Request):
        identifier = TableIdentifier(parse_namespace(namespace), body.name)
        table = await get_catalog(request).create_table(
            identifier,
            Schema.from_dict(body.table_schema),
            body.location,
            body.properties,
            body.format_version,
        )
        return load_table_result(table)

    @app.get("/v1/namespaces/{namespace}/tables/{table}")
    async def load_table(namespace: str, table: str, request: Request):
        loaded = await get_catalog(request).load_table(
            TableIdentifier(parse_namespace(namespace), table)
        )
        return load_table_result(loaded)

    @app.post("/v1/namespaces/{namespace}/tables/{table}")
    async def commit_table(namespace: str, table: str, body: CommitTableRequest, request: Request):
        identifier = TableIdentifier(parse_namespace(namespace), table)
        if body.identifier is not None and (
            tuple(body.identifier.namespace) != identifier.namespace
            or body.identifier.name != identifier.name
        ):
            raise InvalidFormatError(
                f"Commit identifier {body.identifier.model_dump()} does not match {identifier}"
            )

        requirements = [TableRequirement.from_dict(r) for r in body.requirements]
        updates = [TableUpdate.from_dict(u) for u in body.updates]
        committed = await get_catalog(request).commit_table(identifier, requirements, updates)
        return load_table_result(committed)

    return app
