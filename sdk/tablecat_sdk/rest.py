"""
REST catalog transport.

Speaks the catalog REST protocol over httpx:
- POST /v1/namespaces                         create namespace
- GET  /v1/namespaces/{ns}/tables             list tables
- POST /v1/namespaces/{ns}/tables             create table
- GET  /v1/namespaces/{ns}/tables/{table}     load table
- POST /v1/namespaces/{ns}/tables/{table}     commit requirements + updates

Multi-level namespaces are joined with the unit separator (0x1F).

Status mapping:
    - 409 -> CommitConflictError (commit) / AlreadyExistsError (create)
    - 404 -> NotFoundError
    - 400 -> InvalidFormatError
    - anything else, timeouts and connection failures -> TransportError

Invariants:
    - A commit request is sent exactly once; this layer never retries
"""

from __future__ import annotations

import logging
from typing import Any, Sequence
from urllib.parse import quote

import httpx

from .catalog import LoadedTable, TableIdentifier
from .errors import (
    AlreadyExistsError,
    CommitConflictError,
    InvalidFormatError,
    NotFoundError,
    TransportError,
)
from .metadata import TableMetadata
from .requirements import TableRequirement
from .schema import Schema
from .updates import TableUpdate

logger = logging.getLogger(__name__)

NAMESPACE_SEPARATOR = "\x1f"


def encode_namespace(namespace: Sequence[str]) -> str:
    """Encode namespace levels for use as a single path segment."""
    return quote(NAMESPACE_SEPARATOR.join(namespace), safe="")


def parse_load_table_result(identifier: TableIdentifier, data: dict[str, Any]) -> LoadedTable:
    try:
        return LoadedTable(
            identifier=identifier,
            metadata_location=data["metadata-location"],
            metadata=TableMetadata.from_dict(data["metadata"]),
        )
    except KeyError as e:
        raise InvalidFormatError(f"Load table result is missing key {e}") from e


class RestCatalogTransport:
    """CatalogTransport over HTTP.

    Example:
        >>> async with RestCatalogTransport("http://localhost:8181") as transport:
        ...     table = await transport.load_table(TableIdentifier.parse("db.events"))
    """

    def __init__(
        self,
        uri: str,
        *,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the transport.

        Args:
            uri: Catalog base URI
            timeout: Request timeout in seconds
            client: Pre-configured httpx client (the caller keeps ownership)
        """
        self._uri = uri.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=self._uri, timeout=timeout)

    async def __aenter__(self) -> RestCatalogTransport:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _table_path(self, identifier: TableIdentifier) -> str:
        return f"/v1/namespaces/{encode_namespace(identifier.namespace)}/tables/{quote(identifier.name, safe='')}"

    async def _request(self, method: str, path: str, json: Any = None) -> httpx.Response:
        try:
            return await self._client.request(method, path, json=json)
        except httpx.HTTPError as e:
            raise TransportError(f"{method} {path} failed: {e}", uri=self._uri) from e

    def _raise_for_status(
        self,
        response: httpx.Response,
        resource_type: str,
        resource_id: str,
        conflict_error: type = AlreadyExistsError,
    ) -> None:
        if response.is_success:
            return

        try:
            error = response.json().get("error", {})
        except ValueError:
            error = {}
        message = error.get("message") or response.text or response.reason_phrase

        status = response.status_code
        if status == 404:
            raise NotFoundError(message, resource_type=resource_type, resource_id=resource_id)
        if status == 409:
            if conflict_error is CommitConflictError:
                raise CommitConflictError(message, requirement=error.get("requirement"))
            raise AlreadyExistsError(message, resource_type=resource_type, resource_id=resource_id)
        if status == 400:
            raise InvalidFormatError(message)
        raise TransportError(
            f"Unexpected response {status}: {message}",
            uri=self._uri,
            status_code=status,
        )

    async def create_namespace(
        self,
        namespace: Sequence[str],
        properties: dict[str, str] | None = None,
    ) -> None:
        response = await self._request(
            "POST",
            "/v1/namespaces",
            json={"namespace": list(namespace), "properties": properties or {}},
        )
        self._raise_for_status(response, "namespace", ".".join(namespace))

    async def list_tables(self, namespace: Sequence[str]) -> list[TableIdentifier]:
        response = await self._request("GET", f"/v1/namespaces/{encode_namespace(namespace)}/tables")
        self._raise_for_status(response, "namespace", ".".join(namespace))
        return [
            TableIdentifier(tuple(i["namespace"]), i["name"])
            for i in response.json().get("identifiers", [])
        ]

    async def load_table(self, identifier: TableIdentifier) -> LoadedTable:
        response = await self._request("GET", self._table_path(identifier))
        self._raise_for_status(response, "table", str(identifier))
        return parse_load_table_result(identifier, response.json())

    async def create_table(
        self,
        identifier: TableIdentifier,
        schema: Schema,
        location: str | None = None,
        properties: dict[str, str] | None = None,
        format_version: int = 2,
    ) -> LoadedTable:
        body: dict[str, Any] = {
            "name": identifier.name,
            "schema": schema.to_dict(),
            "properties": properties or {},
            "format-version": format_version,
        }
        if location is not None:
            body["location"] = location

        response = await self._request(
            "POST",
            f"/v1/namespaces/{encode_namespace(identifier.namespace)}/tables",
            json=body,
        )
        self._raise_for_status(response, "table", str(identifier))
        return parse_load_table_result(identifier, response.json())

    async def commit_table(
        self,
        identifier: TableIdentifier,
        requirements: Sequence[TableRequirement],
        updates: Sequence[TableUpdate],
    ) -> LoadedTable:
        body = {
            "identifier": {"namespace": list(identifier.namespace), "name": identifier.name},
            "requirements": [r.to_dict() for r in requirements],
            "updates": [u.to_dict() for u in updates],
        }
        response = await self._request("POST", self._table_path(identifier), json=body)
        self._raise_for_status(response, "table", str(identifier), conflict_error=CommitConflictError)
        return parse_load_table_result(identifier, response.json())
