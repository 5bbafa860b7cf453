"""
Minimal async GraphQL client.

Posts ``{query, variables}`` with a bearer token and maps every failure onto
the lineage error taxonomy:
- token acquisition failures -> AuthenticationError
- network failures, non-2xx responses, unreadable bodies -> TransportError
- a non-empty ``errors`` array -> GraphQLError
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from datalineage.exceptions import AuthenticationError, GraphQLError, TransportError
from datalineage.services.token_provider import TokenProvider

logger = logging.getLogger(__name__)

_MAX_ERROR_BODY = 500


class GraphQLClient:
    def __init__(
        self,
        endpoint: str,
        token_provider: Optional[TokenProvider] = None,
        *,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.endpoint = endpoint
        self.token_provider = token_provider
        self.client = client or httpx.AsyncClient(
            timeout=timeout,
            transport=transport,
            headers={"Content-Type": "application/json", "Accept": "application/json"},
        )

    async def close(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> "GraphQLClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def acquire_token(self) -> Optional[str]:
        if self.token_provider is None:
            return None
        try:
            token = await self.token_provider.acquire_token()
        except AuthenticationError:
            raise
        except Exception as e:
            raise AuthenticationError(str(e) or type(e).__name__, cause=e) from e
        if not token:
            raise AuthenticationError("token provider returned an empty token")
        return token

    async def execute(
        self,
        query: str,
        variables: Optional[Dict[str, Any]] = None,
        *,
        token: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Run one query or mutation and return its ``data`` object."""
        if token is None:
            token = await self.acquire_token()

        headers = {"Authorization": f"Bearer {token}"} if token else {}
        try:
            response = await self.client.post(
                self.endpoint,
                json={"query": query, "variables": variables or {}},
                headers=headers,
            )
        except httpx.TimeoutException as e:
            raise TransportError(f"Request timed out: {e}", endpoint=self.endpoint) from e
        except httpx.HTTPError as e:
            raise TransportError(f"Network error: {e}", endpoint=self.endpoint) from e

        if not response.is_success:
            body = response.text[:_MAX_ERROR_BODY]
            raise TransportError(
                f"GraphQL request failed ({response.status_code}): {body}",
                status_code=response.status_code,
                endpoint=self.endpoint,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise TransportError(
                f"Invalid JSON in GraphQL response: {e}",
                status_code=response.status_code,
                endpoint=self.endpoint,
            ) from e

        if not isinstance(payload, dict):
            raise TransportError(
                "GraphQL response is not a JSON object",
                status_code=response.status_code,
                endpoint=self.endpoint,
            )

        errors = payload.get("errors")
        if errors:
            messages = [
                str(err.get("message")) if isinstance(err, dict) else str(err)
                for err in errors
            ]
            logger.warning(f"GraphQL errors from {self.endpoint}: {messages}")
            raise GraphQLError(messages)

        return payload.get("data") or {}
