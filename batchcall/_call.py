from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from ethereum_rpc import Address

from ._contract_abi import ABIDecodingError, ContractABI, MethodCall

T = TypeVar("T")


@dataclass(frozen=True)
class Call(Generic[T]):
    """
    A contract call prepared for aggregation:
    the target address, the encoded call data, and a function decoding the call's output.

    Use :py:func:`describe` or :py:func:`describe_with_decoder` to create one.
    """

    target: Address
    """The address of the called contract."""

    data: bytes
    """Encoded call arguments with the selector."""

    decode: Callable[[bytes], T]
    """
    Decodes the raw output of the call.
    Raises :py:class:`ABIDecodingError` if the output cannot be decoded;
    :py:class:`Multicall` reports an exception of any type as a failed call.
    """

    method_name: str = ""
    """The name of the called method (informational)."""

    def __repr__(self) -> str:
        return f"Call({self.method_name or '<unknown>'} at {self.target.checksum})"


def _encode(contract_abi: ContractABI, method_name: str, *args: Any, **kwargs: Any) -> MethodCall:
    # Raises `ABIEncodingError` if there is no such method, or the arguments do not fit it.
    return contract_abi.method[method_name](*args, **kwargs)


def describe_with_decoder(
    target: Address,
    contract_abi: ContractABI,
    decode: Callable[[bytes], T],
    method_name: str,
    *args: Any,
    **kwargs: Any,
) -> Call[T]:
    """
    Encodes a call of ``method_name`` with the given arguments
    and pairs it with a custom ``decode`` function for the output.

    Raises :py:class:`ABIEncodingError` if the method is not in ``contract_abi``
    or the arguments do not match its signature.
    """
    method_call = _encode(contract_abi, method_name, *args, **kwargs)
    return Call(target=target, data=method_call.data_bytes, decode=decode, method_name=method_name)


def describe(
    target: Address,
    contract_abi: ContractABI,
    method_name: str,
    *args: Any,
    output_type: None | type[T] = None,
    **kwargs: Any,
) -> Call[T]:
    """
    Encodes a call of ``method_name`` with the given arguments.
    The resulting call decodes the method's output with the ABI
    and returns the first output value.

    If ``output_type`` is given, the decoded value is checked to be its instance,
    and :py:class:`ABIDecodingError` is raised on mismatch.

    Raises :py:class:`ABIEncodingError` if the method is not in ``contract_abi``
    or the arguments do not match its signature.
    """
    method_call = _encode(contract_abi, method_name, *args, **kwargs)

    def decode(output_bytes: bytes) -> T:
        outputs = method_call.decode_output(output_bytes)
        if not outputs:
            raise ABIDecodingError(f"Method `{method_name}` has no outputs to decode")
        value = outputs[0]
        # `bool` is a subclass of `int`, but a `bool` output is not a valid `int` one
        if output_type is not None and (
            not isinstance(value, output_type) or (output_type is int and isinstance(value, bool))
        ):
            raise ABIDecodingError(
                f"Expected the output of `{method_name}` to be `{output_type.__name__}`, "
                f"got `{type(value).__name__}`"
            )
        return value  # type: ignore[no-any-return]

    return Call(
        target=target, data=method_call.data_bytes, decode=decode, method_name=method_name
    )
