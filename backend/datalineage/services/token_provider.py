"""
Access token providers.

Token acquisition is owned by the host application; the engine only needs an
awaitable that yields a bearer token.
"""

from __future__ import annotations

import inspect
from typing import Awaitable, Callable, Optional, Protocol, Union, runtime_checkable


@runtime_checkable
class TokenProvider(Protocol):
    async def acquire_token(self) -> str: ...


class StaticTokenProvider:
    """Always returns the same token."""

    def __init__(self, token: str) -> None:
        self._token = token

    async def acquire_token(self) -> str:
        return self._token


class CallableTokenProvider:
    """Adapts a sync or async zero-argument callable."""

    def __init__(self, func: Callable[[], Union[str, Awaitable[str]]]) -> None:
        self._func = func

    async def acquire_token(self) -> str:
        token = self._func()
        if inspect.isawaitable(token):
            token = await token
        return token


def token_provider_from_settings(access_token: Optional[str]) -> Optional[TokenProvider]:
    if access_token:
        return StaticTokenProvider(access_token)
    return None
