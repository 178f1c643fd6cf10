import inspect
from collections.abc import Iterable, Iterator, Mapping, Sequence
from functools import cached_property
from inspect import BoundArguments
from keyword import iskeyword
from typing import Any, cast

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError, EncodingError
from eth_abi.grammar import ABIType, BasicType, TupleType, normalize, parse
from ethereum_rpc import Address, Amount, keccak

ABI_JSON = None | bool | int | float | str | Sequence["ABI_JSON"] | Mapping[str, "ABI_JSON"]
"""Values serializable to JSON."""

# The number of bytes in a function selector.
SELECTOR_LENGTH = 4


class ABIEncodingError(Exception):
    """
    Raised when a contract call cannot be encoded:
    the method is not in the ABI, or the arguments do not match its signature.
    """


class ABIDecodingError(Exception):
    """
    Raised on an error when decoding a value in an Eth ABI encoded bytestring,
    or when the decoded value is not of the expected type.
    """


def canonical_type(type_str: str) -> str:
    """Returns the canonical form of an ABI type (e.g. ``uint`` becomes ``uint256``)."""
    return parse(normalize(type_str)).to_type_str()


def type_from_json(entry: Mapping[str, Any]) -> str:
    """Builds the canonical type string out of a JSON ABI parameter entry."""
    type_str = cast("str", entry["type"])
    if type_str.startswith("tuple"):
        components = ",".join(type_from_json(component) for component in entry["components"])
        # Whatever follows `tuple` is the array suffix, if any.
        return canonical_type(f"({components}){type_str[len('tuple'):]}")
    return canonical_type(type_str)


def _normalize(value: Any) -> Any:
    if isinstance(value, Address):
        return bytes(value)
    if isinstance(value, Amount):
        return value.as_wei()
    if isinstance(value, list | tuple):
        return [_normalize(item) for item in value]
    return value


def _denormalize(abi_type: ABIType, value: Any) -> Any:
    if abi_type.is_array:
        return [_denormalize(abi_type.item_type, item) for item in value]
    if isinstance(abi_type, TupleType):
        return tuple(
            _denormalize(component, item)
            for component, item in zip(abi_type.components, value, strict=True)
        )
    if isinstance(abi_type, BasicType) and abi_type.base == "address":
        return Address.from_hex(value)
    return value


class Fields:
    """Describes a sequence of optionally named typed values (method inputs or outputs)."""

    names: tuple[str | None, ...]
    """Field names."""

    types: tuple[str, ...]
    """Field types in the canonical form."""

    def __init__(
        self, fields: Mapping[str, str] | Sequence[str] | Sequence[tuple[str | None, str]]
    ):
        names: tuple[str | None, ...]
        if isinstance(fields, Mapping):
            names = tuple(fields)
            types = tuple(fields.values())
        elif all(isinstance(elem, str) for elem in fields):
            names = tuple(None for _tp in fields)
            types = tuple(cast("Sequence[str]", fields))
        else:
            fields = cast("Sequence[tuple[str | None, str]]", fields)
            names = tuple(name for name, _tp in fields)
            types = tuple(tp for _name, tp in fields)

        self.names = names
        self.types = tuple(canonical_type(tp) for tp in types)
        self._parsed_types = tuple(parse(tp) for tp in self.types)

    @cached_property
    def as_signature(self) -> inspect.Signature:
        """
        A Python signature accepting the values of these fields.

        Anonymous fields are named ``_1``, ``_2`` etc by their position,
        and names that are Python keywords get a ``_`` appended.
        """
        safe_names = []
        for arg_num, name in enumerate(self.names):
            if not name:
                safe_names.append(f"_{arg_num + 1}")
            elif iskeyword(name):
                safe_names.append(name + "_")
            else:
                safe_names.append(name)

        return inspect.Signature(
            parameters=[
                inspect.Parameter(name, inspect.Parameter.POSITIONAL_OR_KEYWORD)
                for name in safe_names
            ]
        )

    @cached_property
    def canonical_form(self) -> str:
        """The field types joined into a parenthesized tuple type, e.g. ``(address,uint256)``."""
        return "(" + ",".join(self.types) + ")"

    def encode(self, values: Iterable[Any]) -> bytes:
        """ABI-encodes ``values`` given in the order of the fields."""
        try:
            return encode(self.types, _normalize(list(values)))
        except (EncodingError, TypeError, ValueError) as exc:
            raise ABIEncodingError(
                f"Could not encode the values with the signature {self.canonical_form}: {exc}"
            ) from exc

    def decode(self, value_bytes: bytes) -> tuple[Any, ...]:
        """ABI-decodes ``value_bytes`` into a tuple of values, one per field."""
        try:
            values = decode(self.types, value_bytes)
            return tuple(
                _denormalize(tp, value)
                for tp, value in zip(self._parsed_types, values, strict=True)
            )
        except (DecodingError, ValueError, OverflowError) as exc:
            # `eth_abi` raises `UnicodeDecodeError` for malformed strings
            raise ABIDecodingError(
                f"Could not decode the return value "
                f"with the expected signature {self.canonical_form}: {exc}"
            ) from exc

    def __str__(self) -> str:
        fields = ", ".join(
            tp + ((" " + name) if name else "")
            for name, tp in zip(self.names, self.types, strict=True)
        )
        return f"({fields})"


class Method:
    """
    A contract method.

    ``inputs`` and ``outputs`` are given as canonical type strings,
    either as a mapping of names to types, or as a sequence of types.
    """

    name: str
    """The name of this method."""

    inputs: Fields
    """The method arguments."""

    outputs: Fields
    """The method return values."""

    @classmethod
    def from_json(cls, method_entry: ABI_JSON) -> "Method":
        """Builds a method out of a function entry of a JSON ABI."""
        method_entry_typed = cast("Mapping[str, Any]", method_entry)

        if method_entry_typed.get("type", "function") != "function":
            raise ValueError("Method object must be created from a JSON entry with type='function'")

        inputs = [
            (entry.get("name") or None, type_from_json(entry))
            for entry in method_entry_typed.get("inputs", [])
        ]
        outputs = [
            (entry.get("name") or None, type_from_json(entry))
            for entry in method_entry_typed.get("outputs", [])
        ]
        return cls(name=method_entry_typed["name"], inputs=inputs, outputs=outputs)

    def __init__(
        self,
        name: str,
        inputs: Mapping[str, str] | Sequence[str] | Sequence[tuple[str | None, str]],
        outputs: None | Mapping[str, str] | Sequence[str] | Sequence[tuple[str | None, str]] = None,
    ):
        self.name = name
        self.inputs = Fields(inputs)
        self.outputs = Fields(outputs or [])

    def bind(self, *args: Any, **kwargs: Any) -> BoundArguments:
        """Matches positional and keyword arguments to the input fields."""
        try:
            return self.inputs.as_signature.bind(*args, **kwargs)
        except TypeError as exc:
            raise ABIEncodingError(f"{self.name}{self.inputs}: {exc}") from exc

    def __call__(self, *args: Any, **kwargs: Any) -> "MethodCall":
        """Encodes a call of this method with the given arguments."""
        return self.call_bound(self.bind(*args, **kwargs))

    def call_bound(self, bound_args: BoundArguments) -> "MethodCall":
        """Encodes a call of this method with arguments bound by :py:meth:`bind`."""
        return MethodCall(self, self.selector + self.inputs.encode(bound_args.args))

    @cached_property
    def selector(self) -> bytes:
        """Method's selector."""
        return keccak(self.name.encode() + self.inputs.canonical_form.encode())[:SELECTOR_LENGTH]

    def decode_output(self, output_bytes: bytes) -> tuple[Any, ...]:
        """Decodes the output from ABI-packed bytes into a tuple of values."""
        return self.outputs.decode(output_bytes)

    def __str__(self) -> str:
        returns = "" if not self.outputs.types else f" returns {self.outputs}"
        return f"function {self.name}{self.inputs}{returns}"


class MultiMethod:
    """
    Overloads of a contract method: several :py:class:`Method` objects sharing a name
    and differing in their inputs.
    """

    def __init__(self, *methods: Method):
        if len(methods) == 0:
            raise ValueError("`methods` cannot be empty")

        self._name = methods[0].name
        self._methods: dict[str, Method] = {}
        for method in methods:
            if method.name != self._name:
                raise ValueError("All overloaded methods must have the same name")
            self._methods[method.inputs.canonical_form] = method

    @property
    def name(self) -> str:
        """The name of this method."""
        return self._name

    def __getitem__(self, args: str) -> Method:
        """Returns the :py:class:`Method` with the given canonical form of an input signature."""
        return self._methods[args]

    def __call__(self, *args: Any, **kwargs: Any) -> "MethodCall":
        """Returns an encoded call made with the first overload accepting the arguments."""
        for method in self._methods.values():
            try:
                return method(*args, **kwargs)
            except ABIEncodingError:
                continue

        raise ABIEncodingError(
            f"Could not find a suitable overload of `{self._name}` for the given arguments"
        )

    def __str__(self) -> str:
        return "; ".join(str(method) for method in self._methods.values())


class MethodCall:
    """Encoded call arguments with the selector."""

    method: Method
    """The method being called."""

    data_bytes: bytes
    """The selector followed by the encoded arguments."""

    def __init__(self, method: Method, data_bytes: bytes):
        self.method = method
        self.data_bytes = data_bytes

    def decode_output(self, output_bytes: bytes) -> tuple[Any, ...]:
        """Decodes the output of the method that encoded this call."""
        return self.method.decode_output(output_bytes)


class Methods:
    """A holder for named methods which can be accessed as attributes or by name."""

    def __init__(self, methods_dict: Mapping[str, Method | MultiMethod]):
        self._methods_dict = methods_dict

    def __getattr__(self, method_name: str) -> Method | MultiMethod:
        try:
            return self._methods_dict[method_name]
        except KeyError as exc:
            raise AttributeError(method_name) from exc

    def __getitem__(self, method_name: str) -> Method | MultiMethod:
        try:
            return self._methods_dict[method_name]
        except KeyError as exc:
            raise ABIEncodingError(f"There is no method `{method_name}` in the ABI") from exc

    def __contains__(self, method_name: object) -> bool:
        return method_name in self._methods_dict

    def __iter__(self) -> Iterator[Method | MultiMethod]:
        return iter(self._methods_dict.values())


class ContractABI:
    """
    A wrapper for contract ABI.

    Only the function entries are kept; they are accessible via :py:attr:`method`.
    """

    method: Methods
    """Contract's methods."""

    @classmethod
    def from_json(cls, json_abi: ABI_JSON) -> "ContractABI":
        """Builds the ABI out of its JSON form, as emitted by the Solidity compiler."""
        json_abi_typed = cast("Sequence[Mapping[str, ABI_JSON]]", json_abi)

        methods: dict[str, list[Method]] = {}
        for entry in json_abi_typed:
            if entry.get("type", "function") != "function":
                continue
            method = Method.from_json(entry)
            methods.setdefault(method.name, []).append(method)

        return cls(
            methods=[
                overloads[0] if len(overloads) == 1 else MultiMethod(*overloads)
                for overloads in methods.values()
            ]
        )

    def __init__(self, methods: None | Iterable[Method | MultiMethod] = None):
        self.method = Methods({method.name: method for method in (methods or [])})

    def __str__(self) -> str:
        indent = "    "
        method_list = [indent + str(method) for method in self.method]
        return "{\n" + "\n".join(method_list) + "\n}"
