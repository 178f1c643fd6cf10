from collections.abc import AsyncIterator

import pytest
from eth_abi import encode
from ethereum_rpc import Address

from batchcall import Client, ClientSession, ContractABI, Method, Multicall

from .mock_chain import MockChainProvider, MockContract, Revert, revert_data

TOKEN_ADDRESS = Address(b"\x11" * 20)

HOLDER_ADDRESS = Address(b"\x22" * 20)

OTHER_ADDRESS = Address(b"\x33" * 20)

# A subset of the ERC20 ABI as produced by the Solidity compiler,
# with a couple of test-only methods.
TOKEN_JSON_ABI = [
    {
        "type": "function",
        "name": "balanceOf",
        "stateMutability": "view",
        "inputs": [{"internalType": "address", "name": "account", "type": "address"}],
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "symbol",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"internalType": "string", "name": "", "type": "string"}],
    },
    {
        "type": "function",
        "name": "decimals",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"internalType": "uint8", "name": "", "type": "uint8"}],
    },
    {
        "type": "function",
        "name": "owner",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"internalType": "address", "name": "", "type": "address"}],
    },
    {
        "type": "function",
        "name": "transfer",
        "stateMutability": "nonpayable",
        "inputs": [
            {"internalType": "address", "name": "to", "type": "address"},
            {"internalType": "uint256", "name": "value", "type": "uint256"},
        ],
        "outputs": [{"internalType": "bool", "name": "", "type": "bool"}],
    },
    {
        "type": "function",
        "name": "failing",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "garbage",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "garbageString",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"internalType": "string", "name": "", "type": "string"}],
    },
    {
        "type": "event",
        "name": "Transfer",
        "anonymous": False,
        "inputs": [
            {"indexed": True, "internalType": "address", "name": "from", "type": "address"},
            {"indexed": True, "internalType": "address", "name": "to", "type": "address"},
            {"indexed": False, "internalType": "uint256", "name": "value", "type": "uint256"},
        ],
    },
]

TOKEN_BALANCES = {bytes(HOLDER_ADDRESS): 1000, bytes(OTHER_ADDRESS): 25}


def make_token() -> MockContract:
    abi = ContractABI.from_json(TOKEN_JSON_ABI)
    token = MockContract()

    def method(name: str) -> Method:
        method = abi.method[name]
        assert isinstance(method, Method)
        return method

    def failing() -> tuple[int]:
        raise Revert(revert_data("always fails"))

    token.add_method(
        method("balanceOf"), lambda account: (TOKEN_BALANCES.get(bytes(account), 0),)
    )
    token.add_method(method("symbol"), lambda: ("TKN",))
    token.add_method(method("decimals"), lambda: (18,))
    token.add_method(method("owner"), lambda: (HOLDER_ADDRESS,))
    token.add_method(method("failing"), failing)
    # Too short to be a `uint256`
    token.add_method(method("garbage"), lambda: b"\x01\x02\x03")
    # A well-formed `string` payload that is not valid UTF-8
    token.add_method(method("garbageString"), lambda: encode(["bytes"], [b"\xff\xfe"]))
    return token


@pytest.fixture
def token_abi() -> ContractABI:
    return ContractABI.from_json(TOKEN_JSON_ABI)


@pytest.fixture
def chain() -> MockChainProvider:
    provider = MockChainProvider(chain_id=5, block_number=100)
    provider.deploy(TOKEN_ADDRESS, make_token())
    provider.balances[bytes(HOLDER_ADDRESS)] = 10**18
    return provider


@pytest.fixture
async def session(chain: MockChainProvider) -> AsyncIterator[ClientSession]:
    client = Client(provider=chain)
    async with client.session() as session:
        yield session


@pytest.fixture
def multicall(session: ClientSession) -> Multicall:
    return Multicall(session)
