import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any, Generic, TypeVar, overload

from ethereum_rpc import Address, Amount, Block, BlockHash, BlockLabel

from ._batching import RawCall, RawResult, chunk_calls
from ._call import Call, describe, describe_with_decoder
from ._client import (
    BadResponseFormat,
    ClientSession,
    ContractError,
    ContractLegacyError,
    ContractPanic,
)
from ._contract_abi import ABIDecodingError, ContractABI, Method
from ._provider import ProviderError

logger = logging.getLogger(__name__)

MULTICALL3_ADDRESS = Address.from_hex("0xcA11bde05977b3631167028862bE2a173976CA11")
"""The address Multicall3 is deployed at on most EVM networks."""

DEFAULT_MAX_BATCH_SIZE = 8192
"""The default limit on the total call data size in one aggregated call, in bytes."""

_AGGREGATE3 = Method(
    name="aggregate3",
    inputs=dict(calls="(address,bool,bytes)[]"),
    outputs=dict(returnData="(bool,bytes)[]"),
)
_GET_ETH_BALANCE = Method(
    name="getEthBalance", inputs=dict(addr="address"), outputs=dict(balance="uint256")
)
_GET_BLOCK_HASH = Method(
    name="getBlockHash", inputs=dict(blockNumber="uint256"), outputs=dict(blockHash="bytes32")
)
_GET_BASEFEE = Method(name="getBasefee", inputs=[], outputs=dict(basefee="uint256"))

_MULTICALL3_ABI = ContractABI(
    methods=[
        _AGGREGATE3,
        _GET_ETH_BALANCE,
        _GET_BLOCK_HASH,
        _GET_BASEFEE,
        Method(name="getBlockNumber", inputs=[], outputs=dict(blockNumber="uint256")),
        Method(name="getChainId", inputs=[], outputs=dict(chainid="uint256")),
        Method(name="getCurrentBlockTimestamp", inputs=[], outputs=dict(timestamp="uint256")),
    ]
)

T = TypeVar("T")
T1 = TypeVar("T1")
T2 = TypeVar("T2")
T3 = TypeVar("T3")
T4 = TypeVar("T4")
T5 = TypeVar("T5")
T6 = TypeVar("T6")


class AggregationError(Exception):
    """
    Raised when an aggregated call fails as a whole
    (a transport error, a revert of the aggregator itself, or a malformed response).
    The original exception, if any, is attached as ``__cause__``.
    """

    chunk_index: int
    """The zero-based index of the chunk that failed."""

    chunks_total: int
    """The total number of chunks the calls were split into."""

    def __init__(self, message: str, chunk_index: int, chunks_total: int):
        super().__init__(message)
        self.chunk_index = chunk_index
        self.chunks_total = chunks_total


class CallFailed(Exception):
    """A single call in an aggregated request failed or its output could not be decoded."""

    index: int
    """The position of the failed call in the request."""

    reason: str
    """A short description of the failure."""

    error: None | Exception
    """The exception raised by the output decoder, if the failure happened while decoding."""

    def __init__(self, index: int, reason: str, error: None | Exception = None):
        super().__init__(index, reason, error)
        self.index = index
        self.reason = reason
        self.error = error

    def __str__(self) -> str:
        details = f": {self.error}" if self.error is not None else ""
        return f"Call #{self.index} failed ({self.reason}){details}"


@dataclass(frozen=True)
class CallResult(Generic[T]):
    """The outcome of a single call in a best-effort aggregated request."""

    success: bool
    """Whether the call succeeded and its output was decoded."""

    value: None | T = None
    """The decoded output (``None`` if the call failed)."""

    error: None | CallFailed = None
    """The failure description (``None`` if the call succeeded)."""


def _decode_result(index: int, call: Call[T], raw_result: RawResult) -> CallResult[T]:
    if not raw_result.success:
        return CallResult(success=False, error=CallFailed(index, "call reverted"))
    if not raw_result.return_data:
        return CallResult(success=False, error=CallFailed(index, "no data returned"))
    try:
        value = call.decode(raw_result.return_data)
    except Exception as exc:  # noqa: BLE001
        # Custom decoders are not limited to `ABIDecodingError`
        return CallResult(success=False, error=CallFailed(index, "could not decode output", exc))
    return CallResult(success=True, value=value)


def _first_output(method: Method, convert: Callable[[Any], T]) -> Callable[[bytes], T]:
    def decode(output_bytes: bytes) -> T:
        return convert(method.decode_output(output_bytes)[0])

    return decode


class Multicall:
    """
    Batches read-only contract calls through the Multicall3 contract (``aggregate3``).

    ``session`` is an open :py:class:`ClientSession` used to send the aggregated calls.
    ``address`` is the address of the Multicall3 deployment,
    ``max_batch_size`` limits the total size of the call data sent in one ``eth_call``
    (the calls are split into several aggregated calls if they exceed it),
    ``block`` and ``sender_address`` are passed to every ``eth_call``.

    The configuration cannot be changed after construction,
    so the object can be shared between tasks using the same session.
    """

    def __init__(
        self,
        session: ClientSession,
        *,
        address: Address = MULTICALL3_ADDRESS,
        max_batch_size: int = DEFAULT_MAX_BATCH_SIZE,
        block: Block = BlockLabel.LATEST,
        sender_address: None | Address = None,
    ):
        if max_batch_size < 1:
            raise ValueError(f"The maximum batch size must be positive, got {max_batch_size}")

        self._session = session
        self._address = address
        self._max_batch_size = max_batch_size
        self._block = block
        self._sender_address = sender_address

    @property
    def address(self) -> Address:
        """The address of the Multicall3 contract."""
        return self._address

    @property
    def max_batch_size(self) -> int:
        """The maximum total size of the call data in one aggregated call, in bytes."""
        return self._max_batch_size

    @property
    def block(self) -> Block:
        """The block the calls are executed at."""
        return self._block

    @property
    def sender_address(self) -> None | Address:
        """The sender address passed with the calls."""
        return self._sender_address

    async def aggregate(self, calls: Iterable[RawCall | Call[Any]]) -> list[RawResult]:
        """
        Executes ``calls`` via ``aggregate3``, one ``eth_call`` per chunk of calls,
        and returns the results in the same order as ``calls``.
        ``allow_failure`` is forced to ``True`` for every call,
        so that a single reverting call does not abort the rest.

        Raises :py:class:`AggregationError` if any of the aggregated calls fails;
        no partial results are returned in that case.
        """
        raw_calls = [
            RawCall(target=call.target, allow_failure=True, data=call.data) for call in calls
        ]
        if not raw_calls:
            return []

        chunks = chunk_calls(raw_calls, self._max_batch_size)
        logger.debug(
            "Aggregating %d calls in %d chunk(s) via %s",
            len(raw_calls),
            len(chunks),
            self._address.checksum,
        )

        results: list[RawResult] = []
        for chunk_index, chunk in enumerate(chunks):
            results.extend(await self._aggregate_chunk(chunk, chunk_index, len(chunks)))

        return results

    async def _aggregate_chunk(
        self, chunk: Sequence[RawCall], chunk_index: int, chunks_total: int
    ) -> list[RawResult]:
        chunk_size = sum(len(call.data) for call in chunk)
        if chunk_size > self._max_batch_size:
            logger.warning(
                "Chunk %d/%d consists of a single call of %d bytes, "
                "exceeding the maximum batch size of %d bytes",
                chunk_index + 1,
                chunks_total,
                chunk_size,
                self._max_batch_size,
            )
        else:
            logger.debug(
                "Sending chunk %d/%d: %d calls, %d bytes",
                chunk_index + 1,
                chunks_total,
                len(chunk),
                chunk_size,
            )

        aggregate_call = _AGGREGATE3(
            [(call.target, call.allow_failure, call.data) for call in chunk]
        )

        try:
            output = await self._session.call(
                self._address,
                aggregate_call.data_bytes,
                block=self._block,
                sender_address=self._sender_address,
            )
            (decoded,) = aggregate_call.decode_output(output)
        except (
            ProviderError,
            BadResponseFormat,
            ContractPanic,
            ContractLegacyError,
            ContractError,
            ABIDecodingError,
        ) as exc:
            logger.debug("Chunk %d/%d failed: %s", chunk_index + 1, chunks_total, exc)
            raise AggregationError(
                f"Aggregated call for chunk {chunk_index + 1}/{chunks_total} failed: {exc}",
                chunk_index,
                chunks_total,
            ) from exc

        if len(decoded) != len(chunk):
            raise AggregationError(
                f"Aggregated call for chunk {chunk_index + 1}/{chunks_total} "
                f"returned {len(decoded)} results for {len(chunk)} calls",
                chunk_index,
                chunks_total,
            )

        return [RawResult(success=success, return_data=data) for success, data in decoded]

    async def try_call_many(self, calls: Sequence[Call[T]]) -> list[CallResult[T]]:
        """
        Executes ``calls`` and decodes their outputs.

        Individual failures (a reverted call, an empty output, or a decoder error)
        do not raise; they are returned as :py:class:`CallResult` objects
        with ``success=False`` and the failure in ``error``.
        Only :py:class:`AggregationError` is raised.
        """
        raw_results = await self.aggregate(calls)
        return [
            _decode_result(index, call, raw_result)
            for index, (call, raw_result) in enumerate(zip(calls, raw_results, strict=True))
        ]

    async def call_many(self, calls: Sequence[Call[T]]) -> list[T]:
        """
        Executes ``calls`` and returns their decoded outputs in the same order.

        Raises :py:class:`CallFailed` for the first call that failed
        or could not be decoded, and :py:class:`AggregationError`
        if the aggregated call failed as a whole.
        """
        results = await self.try_call_many(calls)
        values = []
        for result in results:
            if result.error is not None:
                raise result.error from result.error.error
            values.append(result.value)
        return values  # type: ignore[return-value]

    @overload
    async def call(self, call1: Call[T1], /) -> tuple[T1]: ...

    @overload
    async def call(self, call1: Call[T1], call2: Call[T2], /) -> tuple[T1, T2]: ...

    @overload
    async def call(
        self, call1: Call[T1], call2: Call[T2], call3: Call[T3], /
    ) -> tuple[T1, T2, T3]: ...

    @overload
    async def call(
        self, call1: Call[T1], call2: Call[T2], call3: Call[T3], call4: Call[T4], /
    ) -> tuple[T1, T2, T3, T4]: ...

    @overload
    async def call(
        self,
        call1: Call[T1],
        call2: Call[T2],
        call3: Call[T3],
        call4: Call[T4],
        call5: Call[T5],
        /,
    ) -> tuple[T1, T2, T3, T4, T5]: ...

    @overload
    async def call(
        self,
        call1: Call[T1],
        call2: Call[T2],
        call3: Call[T3],
        call4: Call[T4],
        call5: Call[T5],
        call6: Call[T6],
        /,
    ) -> tuple[T1, T2, T3, T4, T5, T6]: ...

    @overload
    async def call(self, *calls: Call[Any]) -> tuple[Any, ...]: ...

    async def call(self, *calls: Call[Any]) -> tuple[Any, ...]:
        """
        Executes calls with possibly different output types
        and returns a tuple of the decoded outputs, one per call.

        Fails the same way :py:meth:`call_many` does.
        """
        return tuple(await self.call_many(calls))

    def get_eth_balance(self, address: Address) -> Call[Amount]:
        """Returns a call querying the balance of ``address``."""
        return describe_with_decoder(
            self._address,
            _MULTICALL3_ABI,
            _first_output(_GET_ETH_BALANCE, Amount.wei),
            "getEthBalance",
            address,
        )

    def get_block_number(self) -> Call[int]:
        """Returns a call querying the number of the block the calls are executed at."""
        return describe(self._address, _MULTICALL3_ABI, "getBlockNumber", output_type=int)

    def get_block_hash(self, block_number: int) -> Call[BlockHash]:
        """Returns a call querying the hash of the block ``block_number``."""
        return describe_with_decoder(
            self._address,
            _MULTICALL3_ABI,
            _first_output(_GET_BLOCK_HASH, BlockHash),
            "getBlockHash",
            block_number,
        )

    def get_chain_id(self) -> Call[int]:
        """Returns a call querying the chain ID."""
        return describe(self._address, _MULTICALL3_ABI, "getChainId", output_type=int)

    def get_current_block_timestamp(self) -> Call[int]:
        """Returns a call querying the timestamp of the block the calls are executed at."""
        return describe(
            self._address, _MULTICALL3_ABI, "getCurrentBlockTimestamp", output_type=int
        )

    def get_basefee(self) -> Call[Amount]:
        """Returns a call querying the base fee of the block the calls are executed at."""
        return describe_with_decoder(
            self._address,
            _MULTICALL3_ABI,
            _first_output(_GET_BASEFEE, Amount.wei),
            "getBasefee",
        )
