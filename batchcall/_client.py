from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager, contextmanager
from enum import Enum
from typing import Any, TypeVar

from compages import StructuringError
from eth_abi import decode
from eth_abi.exceptions import DecodingError
from ethereum_rpc import (
    Address,
    Block,
    BlockLabel,
    EthCallParams,
    RPCError,
    RPCErrorCode,
    keccak,
    structure,
    unstructure,
)

from ._provider import Provider, ProviderError, ProviderSession

# Selectors of the errors the Solidity compiler inserts by itself.
LEGACY_ERROR_SELECTOR = keccak(b"Error(string)")[:4]
PANIC_ERROR_SELECTOR = keccak(b"Panic(uint256)")[:4]


class Client:
    """An Ethereum RPC client restricted to read-only calls."""

    def __init__(self, provider: Provider):
        self._provider = provider

    @asynccontextmanager
    async def session(self) -> AsyncIterator["ClientSession"]:
        """Opens a session; the calls made within it may reuse the same connection."""
        async with self._provider.session() as provider_session:
            yield ClientSession(provider_session)


class BadResponseFormat(Exception):
    """The provider returned a result that does not have the expected format."""


class ContractPanicReason(Enum):
    """The meaning of a ``Panic(uint256)`` code inserted by the Solidity compiler."""

    UNKNOWN = -1
    """A code not listed here."""

    COMPILER = 0
    """A generic panic."""

    ASSERTION = 0x01
    """A failed ``assert()``."""

    OVERFLOW = 0x11
    """An arithmetic overflow or underflow in checked arithmetic."""

    DIVISION_BY_ZERO = 0x12
    """A division or a modulo by zero."""

    INVALID_ENUM_VALUE = 0x21
    """A conversion of an out-of-range value into an ``enum``."""

    INVALID_ENCODING = 0x22
    """An access to an incorrectly encoded storage byte array."""

    EMPTY_ARRAY = 0x31
    """A ``.pop()`` on an empty array."""

    OUT_OF_BOUNDS = 0x32
    """An out-of-bounds index into an array, a slice, or ``bytesN``."""

    OUT_OF_MEMORY = 0x41
    """An allocation that is too large."""

    ZERO_DEREFERENCE = 0x51
    """A call through a zero-initialized internal function variable."""

    @classmethod
    def from_int(cls, val: int) -> "ContractPanicReason":
        try:
            return cls(val)
        except ValueError:
            return cls.UNKNOWN


class ContractPanic(Exception):
    """The called contract panicked."""

    Reason = ContractPanicReason

    reason: ContractPanicReason
    """The reason, if the code is a known one."""

    code: int
    """The raw panic code."""

    @classmethod
    def from_code(cls, code: int) -> "ContractPanic":
        return cls(ContractPanicReason.from_int(code), code)

    def __init__(self, reason: ContractPanicReason, code: None | int = None):
        self.reason = reason
        self.code = reason.value if code is None else code
        super().__init__(f"Contract panicked: {reason.name} (code 0x{self.code:x})")


class ContractLegacyError(Exception):
    """The called contract reverted with ``require()`` or ``revert()`` and a message (or none)."""

    message: str
    """The revert message, empty if there was none."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ContractError(Exception):
    """
    The called contract reverted with a custom error (``revert SomeError(...)``).
    The error is left undecoded since its ABI is not known here.
    """

    data: bytes
    """The revert data: the error selector followed by the encoded error fields."""

    def __init__(self, data: bytes):
        super().__init__(f"Contract reverted with data 0x{data.hex()}")
        self.data = data


def _decode_revert_data(
    data: bytes,
) -> None | ContractPanic | ContractLegacyError | ContractError:
    selector, payload = data[:4], data[4:]
    try:
        if selector == LEGACY_ERROR_SELECTOR:
            (message,) = decode(["string"], payload)
            return ContractLegacyError(message)
        if selector == PANIC_ERROR_SELECTOR:
            (code,) = decode(["uint256"], payload)
            return ContractPanic.from_code(code)
    except DecodingError:
        return None
    return ContractError(data)


def decode_contract_error(
    exc: RPCError,
) -> ContractPanic | ContractLegacyError | ContractError | ProviderError:
    """
    Converts an RPC error returned for an ``eth_call`` into a contract error, if it is one.
    Everything else is returned wrapped in :py:class:`ProviderError`.
    """
    # Nodes report a revert without data this way, with no way to tell it apart
    # from other server errors except by the message.
    if exc.parsed_code == RPCErrorCode.SERVER_ERROR and exc.message == "execution reverted":
        return ContractLegacyError("")
    if exc.parsed_code == RPCErrorCode.EXECUTION_ERROR and exc.data:
        contract_error = _decode_revert_data(exc.data)
        if contract_error is not None:
            return contract_error
    return ProviderError(exc)


@contextmanager
def convert_errors(method_name: str) -> Iterator[None]:
    try:
        yield
    except StructuringError as exc:
        raise BadResponseFormat(f"{method_name}: {exc}") from exc


@contextmanager
def convert_contract_errors() -> Iterator[None]:
    try:
        yield
    except ProviderError as exc:
        if isinstance(exc.error, RPCError):
            raise decode_contract_error(exc.error) from exc
        raise


RetType = TypeVar("RetType")


async def rpc_call(
    provider_session: ProviderSession, method_name: str, ret_type: type[RetType], *args: Any
) -> RetType:
    """
    Calls ``method_name`` with unstructured ``args`` and structures the result into ``ret_type``.
    A result that cannot be structured raises :py:class:`BadResponseFormat`.
    """
    with convert_errors(method_name):
        result = await provider_session.rpc(method_name, *(unstructure(arg) for arg in args))
        return structure(ret_type, result)


class ClientSession:
    """
    An open session to the provider, limited to the read-only requests
    needed for aggregating contract calls.

    All methods may raise :py:class:`ProviderError` and :py:class:`BadResponseFormat`;
    :py:meth:`call` also raises :py:class:`ContractLegacyError`,
    :py:class:`ContractError`, and :py:class:`ContractPanic` if the call reverts.
    """

    def __init__(self, provider_session: ProviderSession):
        self._provider_session = provider_session
        self._chain_id: None | int = None

    async def chain_id(self) -> int:
        """Returns the chain ID (``eth_chainId``), requesting it once per session."""
        if self._chain_id is None:
            self._chain_id = await rpc_call(self._provider_session, "eth_chainId", int)
        return self._chain_id

    async def block_number(self) -> int:
        """Returns the number of the most recent block (``eth_blockNumber``)."""
        return await rpc_call(self._provider_session, "eth_blockNumber", int)

    async def call(
        self,
        contract_address: Address,
        data: bytes,
        block: Block = BlockLabel.LATEST,
        sender_address: None | Address = None,
    ) -> bytes:
        """
        Executes ``data`` at ``contract_address`` with ``eth_call`` at the given ``block``
        and returns the raw output.

        ``sender_address``, if given, is what the contract sees as ``msg.sender``.
        """
        params = EthCallParams(to=contract_address, data=data, from_=sender_address)
        with convert_contract_errors():
            return await rpc_call(self._provider_session, "eth_call", bytes, params, block)
