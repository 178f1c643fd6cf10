"""JSON RPC transport: the provider interface and its HTTP implementation."""

import itertools
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Mapping, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass
from http import HTTPStatus
from json import JSONDecodeError
from typing import cast

import httpx
from compages import StructuringError
from ethereum_rpc import RPCError, structure

logger = logging.getLogger(__name__)

RPC_JSON = None | bool | int | float | str | Sequence["RPC_JSON"] | Mapping[str, "RPC_JSON"]
"""JSON-serializable RPC request parameters and response values."""


class InvalidResponse(Exception):
    """The provider responded with something that is not a valid JSON RPC response."""


class Unreachable(Exception):
    """The connection to the provider failed or timed out."""


class ProtocolError(ABC, Exception):
    """
    The transport reported a failure that carries no JSON RPC error object,
    so it cannot be categorized any further.
    Transport-specific subclasses hold the details.
    """


@dataclass
class ProviderError(Exception):
    """A request to the provider failed."""

    error: RPCError | Unreachable | InvalidResponse | ProtocolError
    """The cause: an error returned by the node, or a transport-level failure."""

    def __str__(self) -> str:
        return f"Provider error: {self.error}"


class Provider(ABC):
    """A source of JSON RPC sessions."""

    @abstractmethod
    @asynccontextmanager
    async def session(self) -> AsyncIterator["ProviderSession"]:
        """
        Opens a session.
        Requests made within one session may share a connection.
        """
        # mypy does not work with abstract generators correctly.
        # See https://github.com/python/mypy/issues/5070
        yield  # type: ignore[misc]


class ProviderSession(ABC):
    """An open session able to make JSON RPC requests."""

    @abstractmethod
    async def rpc(self, method: str, *args: RPC_JSON) -> RPC_JSON:
        """
        Calls ``method`` with already unstructured arguments and returns the raw result.
        Raises :py:class:`ProviderError` on failure.
        """
        ...


class HTTPError(ProtocolError):
    """A non-200 HTTP response without a JSON RPC error object in it."""

    status: HTTPStatus
    """The HTTP status of the response."""

    message: str
    """The response body."""

    def __init__(self, status_code: int, message: str):
        try:
            status = HTTPStatus(status_code)
        except ValueError:  # pragma: no cover
            status = HTTPStatus.INTERNAL_SERVER_ERROR

        self.status = status
        self.message = message

    def __str__(self) -> str:
        return f"HTTP status {self.status}: {self.message}"


def _parse_response(http_response: httpx.Response, request_id: int) -> RPC_JSON:
    status = http_response.status_code
    try:
        response = http_response.json()
    except JSONDecodeError as exc:
        content = http_response.content.decode()
        raise ProviderError(
            InvalidResponse(f"Expected a JSON response, got HTTP status {status}: {content}")
        ) from exc

    if not isinstance(response, Mapping):
        raise ProviderError(InvalidResponse(f"RPC response must be a dictionary, got: {response}"))
    response = cast("Mapping[str, RPC_JSON]", response)

    # A node reports reverted calls with the status 200 and an "error" object,
    # so the error has to be looked for regardless of the status.
    if "error" in response:
        try:
            error = structure(RPCError, response["error"])
        except StructuringError as exc:
            raise ProviderError(
                InvalidResponse(f"Failed to parse an error response: {response}")
            ) from exc
        raise ProviderError(error)

    if status != HTTPStatus.OK:
        raise ProviderError(HTTPError(status, http_response.content.decode()))

    if "result" not in response:
        raise ProviderError(InvalidResponse(f"`result` is not present in the response: {response}"))

    if response.get("id", request_id) != request_id:
        raise ProviderError(
            InvalidResponse(f"Expected a response to request {request_id}, got: {response}")
        )

    return response["result"]


class HTTPProvider(Provider):
    """
    Sends JSON RPC requests over HTTP(S) to ``url``.

    ``timeout`` (in seconds) bounds every request made within a session;
    a request exceeding it fails with :py:class:`Unreachable`.
    ``None`` means no limit.
    """

    def __init__(self, url: str, *, timeout: None | float = None):
        self._url = url
        self._timeout = timeout

    @asynccontextmanager
    async def session(self) -> AsyncIterator["HTTPProviderSession"]:
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            yield HTTPProviderSession(self._url, client)


class HTTPProviderSession(ProviderSession):
    def __init__(self, url: str, http_client: httpx.AsyncClient):
        self._url = url
        self._client = http_client
        self._request_ids = itertools.count()

    def _prepare_request(self, request_id: int, method: str, *args: RPC_JSON) -> RPC_JSON:
        return {"jsonrpc": "2.0", "method": method, "params": list(args), "id": request_id}

    async def rpc(self, method: str, *args: RPC_JSON) -> RPC_JSON:
        request_id = next(self._request_ids)
        request = self._prepare_request(request_id, method, *args)
        logger.debug("RPC request #%d: %s", request_id, method)

        try:
            response = await self._client.post(self._url, json=request)
        except httpx.TransportError as exc:
            raise ProviderError(Unreachable(str(exc) or type(exc).__name__)) from exc

        return _parse_response(response, request_id)
