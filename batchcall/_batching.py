from collections.abc import Sequence
from dataclasses import dataclass

from ethereum_rpc import Address


@dataclass(frozen=True)
class RawCall:
    """A single entry of an ``aggregate3`` request."""

    target: Address
    """The address of the called contract."""

    allow_failure: bool
    """If ``False``, a revert of this call reverts the whole aggregated call."""

    data: bytes
    """Encoded call arguments with the selector."""


@dataclass(frozen=True)
class RawResult:
    """A single entry of an ``aggregate3`` response."""

    success: bool
    """Whether the corresponding call succeeded."""

    return_data: bytes
    """The raw output of the call (or the revert data if it failed)."""


def chunk_calls(calls: Sequence[RawCall], max_batch_size: int) -> list[list[RawCall]]:
    """
    Splits ``calls`` into contiguous chunks such that the total size of the call data
    in each chunk does not exceed ``max_batch_size`` bytes.

    The order of calls is preserved, and every call ends up in exactly one chunk.
    A call larger than ``max_batch_size`` by itself is not split or rejected,
    but is placed in a chunk of its own.
    """
    if max_batch_size < 1:
        raise ValueError(f"The maximum batch size must be positive, got {max_batch_size}")

    chunks: list[list[RawCall]] = []
    current_chunk: list[RawCall] = []
    current_size = 0

    for call in calls:
        if current_chunk and current_size + len(call.data) > max_batch_size:
            chunks.append(current_chunk)
            current_chunk = []
            current_size = 0

        current_chunk.append(call)
        current_size += len(call.data)

    if current_chunk:
        chunks.append(current_chunk)

    return chunks
