import logging
from dataclasses import dataclass
from http import HTTPStatus
from json import JSONDecodeError
from typing import cast

import trio
from ethereum_rpc import ErrorCode, RPCError, RPCErrorCode, unstructure
from hypercorn.config import Config
from hypercorn.trio import serve
from hypercorn.typing import ASGIFramework
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from ._provider import RPC_JSON, HTTPProvider, Provider, ProviderError

logger = logging.getLogger(__name__)


@dataclass
class _RPCRequest:
    request_id: RPC_JSON
    method: str
    params: list[RPC_JSON]


class _InvalidRequest(Exception):
    pass


def parse_request(request: RPC_JSON) -> _RPCRequest:
    if not isinstance(request, dict):
        raise _InvalidRequest("The request must be a dictionary")
    if "method" not in request or "id" not in request:
        raise _InvalidRequest("The request must contain `method` and `id`")

    method = request["method"]
    if not isinstance(method, str):
        raise _InvalidRequest("The method name must be a string")

    params = request.get("params", [])
    if not isinstance(params, list):
        raise _InvalidRequest("The method parameters must be a list")

    return _RPCRequest(request_id=request["id"], method=method, params=params)


def _error_body(request_id: RPC_JSON, error: RPCError) -> dict[str, RPC_JSON]:
    return {"jsonrpc": "2.0", "id": request_id, "error": unstructure(error)}


async def process_request(provider: Provider, request: RPC_JSON) -> tuple[HTTPStatus, RPC_JSON]:
    """
    Executes a single JSON RPC request with ``provider``
    and returns the HTTP status and the body of the response.

    Errors returned by the node are passed on with the status 200, the way nodes report them.
    Other provider errors propagate.
    """
    try:
        rpc_request = parse_request(request)
    except _InvalidRequest as exc:
        error = RPCError(ErrorCode(RPCErrorCode.INVALID_REQUEST.value), str(exc))
        return HTTPStatus.BAD_REQUEST, _error_body(None, error)

    try:
        async with provider.session() as session:
            result = await session.rpc(rpc_request.method, *rpc_request.params)
    except ProviderError as exc:
        if not isinstance(exc.error, RPCError):
            raise
        return HTTPStatus.OK, _error_body(rpc_request.request_id, exc.error)

    return HTTPStatus.OK, {"jsonrpc": "2.0", "id": rpc_request.request_id, "result": result}


async def entry_point(request: Request) -> Response:
    try:
        data = await request.json()
    except JSONDecodeError:
        error = RPCError(ErrorCode(RPCErrorCode.INVALID_REQUEST.value), "invalid json request")
        return JSONResponse(_error_body(None, error), status_code=HTTPStatus.BAD_REQUEST)

    provider = request.app.state.provider
    try:
        status, response = await process_request(provider, data)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Failed to process request: %s", data)
        return Response(str(exc), status_code=HTTPStatus.INTERNAL_SERVER_ERROR)

    return JSONResponse(response, status_code=status)


def make_app(provider: Provider) -> ASGIFramework:
    """Creates an ASGI app serving JSON RPC requests with ``provider``."""
    app = Starlette(routes=[Route("/", entry_point, methods=["POST"])])
    app.state.provider = provider
    # Starlette and Hypercorn do not share a typing package
    return cast("ASGIFramework", app)


class HTTPProviderServer:
    """
    Serves a :py:class:`Provider` over HTTP,
    so that it can be reached with :py:class:`HTTPProvider`.
    Meant for tests.

    Start it with ``await nursery.start(server)``, stop with ``await server.shutdown()``.
    """

    http_provider: HTTPProvider
    """A provider connected to this server."""

    def __init__(self, provider: Provider, host: str = "127.0.0.1", port: int = 8888):
        self._host = host
        self._port = port
        self._provider = provider
        self._shutdown_event = trio.Event()
        self._shutdown_finished = trio.Event()
        self.http_provider = HTTPProvider(f"http://{self._host}:{self._port}")

    async def __call__(
        self, *, task_status: trio.TaskStatus[None] = trio.TASK_STATUS_IGNORED
    ) -> None:
        config = Config()
        config.bind = [f"{self._host}:{self._port}"]
        config.worker_class = "trio"
        await serve(
            make_app(self._provider),
            config,
            shutdown_trigger=self._shutdown_event.wait,
            task_status=task_status,
        )
        self._shutdown_finished.set()

    async def shutdown(self) -> None:
        """Stops the server and waits until it is down."""
        self._shutdown_event.set()
        await self._shutdown_finished.wait()
