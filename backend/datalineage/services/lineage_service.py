"""
Lineage fetch orchestrator.

Talks to the lineage GraphQL API with cold-start tolerant retries:
- every attempt reports a connection phase to an optional progress callback
- objects and edges are fetched concurrently and joined; either failing fails the attempt
- AuthenticationError / TransportError are retried with capped exponential backoff
- GraphQLError is never retried; it is reported as Failed and re-raised
- exhausted retries raise a single LineageFetchError
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, TypeVar, Union

from pydantic import ValidationError

from datalineage.exceptions import (
    AuthenticationError,
    ConfigurationError,
    GraphQLError,
    LineageError,
    LineageFetchError,
    TransportError,
    endpoint_host,
)
from datalineage.models.lineage import (
    REF_TYPE_MAP,
    ConnectionTestResult,
    DefinitionRecord,
    EdgeRecord,
    LineageObject,
    ObjectKey,
    ObjectRecord,
    ObjectType,
    SearchResult,
    Source,
)
from datalineage.models.progress import (
    PHASE_MESSAGES,
    ConnectionPhase,
    ConnectionProgress,
    ProgressCallback,
    attempt_progress,
)
from datalineage.services.graphql_client import GraphQLClient
from datalineage.services.token_provider import TokenProvider, token_provider_from_settings
from datalineage.utils.retry import RetryError, RetryPolicy, SleepFunc, retry_async

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_ERRORS = (AuthenticationError, TransportError)

SOURCES_QUERY = """
query GetSources {
  vw_sources {
    items {
      source_id
      database_name
      description
      is_active
      created_at
    }
  }
}
"""

SEARCH_DDL_QUERY = """
query SearchDdl($query: String!, $schemas: String, $types: String, $source_id: Int) {
  executesp_search_ddl(query: $query, schemas: $schemas, types: $types, source_id: $source_id) {
    source_id
    object_id
    schema_name
    object_name
    object_type
    ddl_text
    snippet
  }
}
"""

SET_ACTIVE_SOURCE_MUTATION = """
mutation SetActiveSource($source_id: Int) {
  executesp_set_active_source(source_id: $source_id) {
    __typename
  }
}
"""

TEST_CONNECTION_QUERY = """
query TestConnection {
  vw_sources(first: 1) { items { source_id database_name } }
  vw_objects(first: 5) { items { object_id object_name } }
  vw_lineage_edges(first: 5) { items { source_object_id target_object_id } }
}
"""


def _view_query(view: str, fields: Sequence[str], *, first: Optional[int] = None, **eq_filters: Optional[int]) -> str:
    args = []
    if first:
        args.append(f"first: {int(first)}")
    conditions = [f"{name}: {{ eq: {int(value)} }}" for name, value in eq_filters.items() if value is not None]
    if conditions:
        args.append(f"filter: {{ {', '.join(conditions)} }}")
    arg_text = f"({', '.join(args)})" if args else ""
    field_text = " ".join(fields)
    return f"query {{ {view}{arg_text} {{ items {{ {field_text} }} }} }}"


def objects_query(page_size: int, source_id: Optional[int] = None) -> str:
    return _view_query(
        "vw_objects",
        ("source_id", "object_id", "schema_name", "object_name", "object_type", "ref_type", "ref_name"),
        first=page_size,
        source_id=source_id,
    )


def edges_query(page_size: int, source_id: Optional[int] = None) -> str:
    return _view_query(
        "vw_lineage_edges",
        ("source_id", "source_object_id", "target_object_id", "is_bidirectional"),
        first=page_size,
        source_id=source_id,
    )


def definition_query(object_id: int, source_id: Optional[int] = None) -> str:
    return _view_query(
        "vw_definitions",
        ("source_id", "object_id", "definition"),
        first=1,
        object_id=object_id,
        source_id=source_id,
    )


def _items(data: Dict[str, Any], view: str) -> List[Any]:
    container = data.get(view)
    if isinstance(container, dict):
        container = container.get("items")
    return list(container or [])


def parse_records(model: type, rows: Iterable[Any], view: str) -> List[Any]:
    try:
        return [model.model_validate(row) for row in rows]
    except ValidationError as e:
        raise GraphQLError([f"Unexpected {view} row shape: {e.errors()[0].get('msg', e)}"]) from e


def _resolve_object_type(record: ObjectRecord, is_external: bool) -> Optional[ObjectType]:
    try:
        return ObjectType(record.object_type)
    except ValueError:
        return ObjectType.EXTERNAL if is_external else None


def merge_lineage_records(
    objects: Sequence[ObjectRecord],
    edges: Sequence[EdgeRecord],
    source_id: Optional[int] = None,
) -> List[LineageObject]:
    """
    Join object rows and edge rows into lineage nodes.

    Edge ``source -> target`` becomes an output of source and an input of
    target. Self edges are dropped, neighbor lists keep first-seen order
    without duplicates, and ``is_bidirectional`` rows fill
    ``bidirectional_with``. Objects with ``ref_type > 0`` are external.
    """
    inputs: Dict[ObjectKey, List[ObjectKey]] = defaultdict(list)
    outputs: Dict[ObjectKey, List[ObjectKey]] = defaultdict(list)
    bidirectional: Dict[ObjectKey, List[ObjectKey]] = defaultdict(list)

    skipped_edges = 0
    for edge in edges:
        edge_source_id = edge.source_id if edge.source_id is not None else source_id
        if edge_source_id is None or edge.source_object_id == edge.target_object_id:
            skipped_edges += 1
            continue
        src = ObjectKey(edge_source_id, edge.source_object_id)
        dst = ObjectKey(edge_source_id, edge.target_object_id)
        outputs[src].append(dst)
        inputs[dst].append(src)
        if edge.is_bidirectional:
            bidirectional[src].append(dst)

    nodes: List[LineageObject] = []
    seen = set()
    skipped_objects = 0
    for record in objects:
        key = ObjectKey(record.source_id, record.object_id)
        if key in seen:
            continue
        is_external = record.ref_type > 0
        object_type = _resolve_object_type(record, is_external)
        if object_type is None:
            skipped_objects += 1
            logger.warning(f"Skipping object {key.encode()} with unknown type {record.object_type!r}")
            continue
        seen.add(key)
        nodes.append(
            LineageObject(
                key=key,
                name=record.object_name,
                schema_name=record.schema_name or "",
                object_type=object_type,
                inputs=tuple(inputs.get(key, ())),
                outputs=tuple(outputs.get(key, ())),
                bidirectional_with=tuple(bidirectional.get(key, ())),
                is_external=is_external,
                external_ref_type=REF_TYPE_MAP.get(record.ref_type) if is_external else None,
                ref_name=record.ref_name or None,
            )
        )

    if skipped_edges or skipped_objects:
        logger.debug(f"Merge skipped {skipped_edges} edges and {skipped_objects} objects")
    return nodes


def _report(on_progress: Optional[ProgressCallback], progress: ConnectionProgress) -> None:
    if on_progress is None:
        return
    try:
        on_progress(progress)
    except Exception as e:
        logger.warning(f"Progress callback raised {type(e).__name__}: {e}")


class LineageService:
    """Retrying client for the lineage GraphQL API."""

    def __init__(
        self,
        endpoint: Optional[str],
        token_provider: Optional[TokenProvider] = None,
        *,
        retry_policy: Optional[RetryPolicy] = None,
        page_size: int = 10000,
        request_timeout: float = 30.0,
        ddl_timeout: float = 10.0,
        client: Optional[GraphQLClient] = None,
        transport: Any = None,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        self.endpoint = (endpoint or "").strip()
        self.token_provider = token_provider
        self.retry_policy = retry_policy or RetryPolicy()
        self.page_size = page_size
        self.request_timeout = request_timeout
        self.ddl_timeout = ddl_timeout
        self._client = client
        self._transport = transport
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls,
        settings: Any,
        token_provider: Optional[TokenProvider] = None,
        **kwargs: Any,
    ) -> "LineageService":
        graphql = settings.graphql
        return cls(
            graphql.endpoint,
            token_provider or token_provider_from_settings(graphql.access_token),
            retry_policy=RetryPolicy.from_settings(settings.retry),
            page_size=graphql.page_size,
            request_timeout=graphql.request_timeout_seconds,
            ddl_timeout=graphql.ddl_timeout_seconds,
            **kwargs,
        )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None

    async def __aenter__(self) -> "LineageService":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_endpoint(self) -> GraphQLClient:
        if not self.endpoint:
            raise ConfigurationError(
                "GraphQL endpoint not configured. Please set the endpoint URL first.",
                setting="graphql.endpoint",
            )
        if self._client is None:
            self._client = GraphQLClient(
                self.endpoint,
                self.token_provider,
                timeout=self.request_timeout,
                transport=self._transport,
            )
        return self._client

    def _fetch_error(self, description: str, error: RetryError) -> LineageFetchError:
        last_error = error.last_error
        status_code = getattr(last_error, "status_code", None)
        host = endpoint_host(self.endpoint) or self.endpoint
        message = f"{description} failed after {error.attempts} attempts"
        if host:
            message += f" ({host})"
        if status_code is not None:
            message += f" [HTTP {status_code}]"
        if last_error is not None:
            message += f": {last_error}"
        return LineageFetchError(
            message,
            last_error=last_error,
            attempts=error.attempts,
            endpoint=self.endpoint,
            status_code=status_code,
        )

    async def _run_with_retry(
        self,
        operation: Callable[[GraphQLClient, Optional[str]], Awaitable[T]],
        *,
        description: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> T:
        client = self._require_endpoint()
        max_attempts = self.retry_policy.max_attempts

        async def attempt_once(attempt: int) -> T:
            token = await client.acquire_token()
            return await operation(client, token)

        try:
            return await retry_async(
                attempt_once,
                policy=self.retry_policy,
                retry_on=RETRYABLE_ERRORS,
                on_attempt=lambda attempt: _report(on_progress, attempt_progress(attempt, max_attempts)),
                sleep=self._sleep,
                description=description,
            )
        except RetryError as e:
            error = self._fetch_error(description, e)
            logger.error(error.message)
            _report(
                on_progress,
                ConnectionProgress(
                    phase=ConnectionPhase.FAILED,
                    message=f"Connection failed after {e.attempts} attempts",
                    attempt=e.attempts,
                    max_attempts=max_attempts,
                    error=error.message,
                ),
            )
            raise error from e.last_error
        except GraphQLError as e:
            logger.error(f"{description} returned GraphQL errors: {e.message}")
            _report(
                on_progress,
                ConnectionProgress(
                    phase=ConnectionPhase.FAILED,
                    message=PHASE_MESSAGES[ConnectionPhase.FAILED],
                    max_attempts=max_attempts,
                    error=e.message,
                ),
            )
            raise

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def fetch_lineage(
        self,
        source_id: Optional[int] = None,
        *,
        on_progress: Optional[ProgressCallback] = None,
    ) -> List[LineageObject]:
        """Fetch objects and edges for one source and merge them into nodes."""

        async def fetch_both(client: GraphQLClient, token: Optional[str]) -> Tuple[List[ObjectRecord], List[EdgeRecord]]:
            results = await asyncio.gather(
                client.execute(objects_query(self.page_size, source_id), token=token),
                client.execute(edges_query(self.page_size, source_id), token=token),
                return_exceptions=True,
            )
            for result in results:
                if isinstance(result, BaseException):
                    raise result
            objects_data, edges_data = results
            return (
                parse_records(ObjectRecord, _items(objects_data, "vw_objects"), "vw_objects"),
                parse_records(EdgeRecord, _items(edges_data, "vw_lineage_edges"), "vw_lineage_edges"),
            )

        objects, edges = await self._run_with_retry(
            fetch_both, description="fetch_lineage", on_progress=on_progress
        )

        _report(
            on_progress,
            ConnectionProgress(
                phase=ConnectionPhase.LOADING_DATA,
                message=PHASE_MESSAGES[ConnectionPhase.LOADING_DATA],
            ),
        )
        nodes = merge_lineage_records(objects, edges, source_id)
        logger.info(
            f"Fetched lineage for source {source_id}: {len(objects)} objects, {len(edges)} edges"
        )
        _report(
            on_progress,
            ConnectionProgress(
                phase=ConnectionPhase.COMPLETED,
                message=PHASE_MESSAGES[ConnectionPhase.COMPLETED],
            ),
        )
        return nodes

    async def fetch_sources(self, *, on_progress: Optional[ProgressCallback] = None) -> List[Source]:
        async def fetch(client: GraphQLClient, token: Optional[str]) -> List[Source]:
            data = await client.execute(SOURCES_QUERY, token=token)
            return parse_records(Source, _items(data, "vw_sources"), "vw_sources")

        sources = await self._run_with_retry(fetch, description="fetch_sources", on_progress=on_progress)
        _report(
            on_progress,
            ConnectionProgress(phase=ConnectionPhase.COMPLETED, message=PHASE_MESSAGES[ConnectionPhase.COMPLETED]),
        )
        return sources

    async def fetch_object_definition(self, object_id: int, source_id: Optional[int] = None) -> Optional[str]:
        """
        Definition text of one object, fetched on demand.

        Single attempt bounded by ``ddl_timeout``; a slow cold-starting
        database surfaces as TransportError instead of a hanging call.
        """
        client = self._require_endpoint()
        try:
            data = await asyncio.wait_for(
                client.execute(definition_query(object_id, source_id)),
                timeout=self.ddl_timeout,
            )
        except asyncio.TimeoutError as e:
            raise TransportError(
                "Request timed out. The database may be warming up, please try again.",
                endpoint=self.endpoint,
            ) from e

        records = parse_records(DefinitionRecord, _items(data, "vw_definitions"), "vw_definitions")
        for record in records:
            if record.object_id == object_id and record.definition:
                return record.definition
        return None

    async def search_ddl(
        self,
        query: str,
        schemas: Union[str, Sequence[str], None] = None,
        types: Union[str, Sequence[str], None] = None,
        source_id: Optional[int] = None,
    ) -> List[SearchResult]:
        """Full-text search over object definitions."""
        query = (query or "").strip()
        if not query:
            raise ValueError("query is required")

        def joined(values: Union[str, Sequence[str], None]) -> Optional[str]:
            if not values:
                return None
            if isinstance(values, str):
                return values
            return ",".join(v for v in values if v) or None

        variables = {
            "query": query,
            "schemas": joined(schemas),
            "types": joined(types),
            "source_id": source_id or None,
        }

        async def search(client: GraphQLClient, token: Optional[str]) -> List[SearchResult]:
            data = await client.execute(SEARCH_DDL_QUERY, variables, token=token)
            rows = data.get("executesp_search_ddl") or []
            return parse_records(SearchResult, rows, "executesp_search_ddl")

        return await self._run_with_retry(search, description="search_ddl")

    async def set_active_source(self, source_id: Optional[int] = None) -> None:
        """
        Activate a source server-side.

        Without ``source_id`` the server activates the first alphabetical
        source when none is active.
        """

        async def mutate(client: GraphQLClient, token: Optional[str]) -> None:
            await client.execute(SET_ACTIVE_SOURCE_MUTATION, {"source_id": source_id}, token=token)

        await self._run_with_retry(mutate, description="set_active_source")
        logger.info(f"Active source set to {source_id}")

    async def test_connection(self) -> ConnectionTestResult:
        """Probe the endpoint. Failures are reported in the result, never raised."""
        timestamp = datetime.now(timezone.utc)

        async def query_views(client: GraphQLClient, token: Optional[str]) -> Dict[str, Any]:
            return await client.execute(TEST_CONNECTION_QUERY, token=token)

        try:
            data = await self._run_with_retry(query_views, description="test_connection")
        except GraphQLError as e:
            return ConnectionTestResult(
                success=False,
                message="GraphQL query returned errors",
                error="; ".join(e.messages),
                timestamp=timestamp,
            )
        except LineageError as e:
            return ConnectionTestResult(
                success=False,
                message="Failed to connect to GraphQL endpoint",
                error=e.message,
                timestamp=timestamp,
            )

        sources = _items(data, "vw_sources")
        objects = _items(data, "vw_objects")
        edges = _items(data, "vw_lineage_edges")
        return ConnectionTestResult(
            success=True,
            message=(
                f"Connected! Found {len(sources)} source(s), "
                f"{len(objects)}+ objects, {len(edges)}+ edges."
            ),
            source_count=len(sources),
            object_count=len(objects),
            edge_count=len(edges),
            timestamp=timestamp,
        )
