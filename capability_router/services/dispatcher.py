from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Protocol, Sequence, runtime_checkable

import httpx

from ..core.logging import get_logger
from ..execution.cancellation import CancellationToken
from ..execution.exceptions import RequestCancelledError, UnknownCapabilityError
from ..schemas.results import CallResult, ChatMessage

logger = get_logger(name=__name__)

__all__ = [
    "CapabilityClient",
    "CapabilityDispatcher",
    "CapabilityRequest",
    "ClientRegistryDispatcher",
    "LanguageModelOptions",
]


@dataclass(frozen=True)
class LanguageModelOptions:
    """Extra inputs understood by the language-model client. Other clients ignore them."""

    model: str | None = None
    history: Sequence[ChatMessage] = ()
    system_prompt: str | None = None
    include_system_prompt: bool = True


@dataclass(frozen=True)
class CapabilityRequest:
    api: str
    requester: str
    text: str
    keyword: str | None = None
    options: LanguageModelOptions = field(default_factory=LanguageModelOptions)


@runtime_checkable
class CapabilityDispatcher(Protocol):
    """Maps an API category to a concrete client. Owns transport detail and response shaping."""

    async def execute_request(
        self,
        api: str,
        requester: str,
        text: str,
        token: CancellationToken,
        *,
        options: LanguageModelOptions | None = None,
        keyword: str | None = None,
    ) -> CallResult: ...


@runtime_checkable
class CapabilityClient(Protocol):
    async def execute(self, request: CapabilityRequest, token: CancellationToken) -> CallResult: ...


class ClientRegistryDispatcher:
    """Dispatcher backed by an explicit category -> client registry."""

    def __init__(self, clients: dict[str, CapabilityClient] | None = None) -> None:
        self._clients: dict[str, CapabilityClient] = {}
        for api, client in (clients or {}).items():
            self.register(api, client)

    def register(self, api: str, client: CapabilityClient) -> None:
        key = api.strip().lower()
        if not key:
            raise ValueError("API category must be a non-empty string")
        self._clients[key] = client

    def resolve(self, api: str) -> CapabilityClient:
        client = self._clients.get(api.strip().lower())
        if client is None:
            raise UnknownCapabilityError(f"No client registered for API category '{api}'")
        return client

    def categories(self) -> list[str]:
        return sorted(self._clients)

    async def execute_request(
        self,
        api: str,
        requester: str,
        text: str,
        token: CancellationToken,
        *,
        options: LanguageModelOptions | None = None,
        keyword: str | None = None,
    ) -> CallResult:
        try:
            client = self.resolve(api)
        except UnknownCapabilityError as exc:
            logger.warning("dispatcher_unknown_api", api=api, requester=requester)
            return CallResult.failure(str(exc))

        request = CapabilityRequest(
            api=api,
            requester=requester,
            text=text,
            keyword=keyword,
            options=options or LanguageModelOptions(),
        )
        token.raise_if_cancelled()
        try:
            return await client.execute(request, token)
        except (RequestCancelledError, asyncio.CancelledError):
            raise
        except httpx.TimeoutException as exc:
            logger.warning("dispatcher_upstream_timeout", api=api, error=str(exc))
            return CallResult.failure(f"{api} request timed out upstream")
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            logger.warning("dispatcher_upstream_status", api=api, status=status)
            return CallResult.failure(f"{api} returned HTTP {status}: {exc.response.reason_phrase}".rstrip(": "))
        except httpx.HTTPError as exc:
            logger.warning("dispatcher_upstream_error", api=api, error=str(exc))
            return CallResult.failure(f"{api} request failed: {exc}")
