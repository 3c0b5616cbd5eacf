import threading
from types import SimpleNamespace
import pytest
from substrateinterface.exceptions import SubstrateRequestException
from subderive.apis.substrate_wrapper import SubstrateWrapper
from chain_fixtures import ALICE, ALICE_ADDRESS


def remark_extrinsic(signer=ALICE_ADDRESS):
    return SimpleNamespace(value={
        "address": signer,
        "call": {
            "call_module": "Utility",
            "call_function": "as_derivative",
            "call_args": [
                {"name": "index", "type": "u16", "value": 2},
                {"name": "call", "type": "RuntimeCall", "value": {
                    "call_module": "System", "call_function": "remark", "call_args": []}},
            ],
        },
    })


class FakeSubstrate:
    """Mimics the blocking `SubstrateInterface` methods the wrapper uses."""

    ss58_format = 42

    def __init__(self, head=300, failures=0, error=ConnectionError):
        self.head = head
        self.failures = failures
        self.error = error
        self.calls = 0
        self.closed = False
        self.queried = []
        self._lock = threading.Lock()

    def _maybe_fail(self):
        with self._lock:
            self.calls += 1
            if self.failures > 0:
                self.failures -= 1
                raise self.error("node went away")

    def rpc_request(self, method, params):
        return {"jsonrpc": "2.0", "result": "Paseo Testnet", "id": 1}

    def get_chain_head(self):
        return "0xhead"

    def get_block_number(self, block_hash):
        return self.head

    def get_metadata_call_function(self, module, function):
        if (module, function) == ("Utility", "as_derivative"):
            return {"name": "as_derivative"}
        return None

    def get_block_hash(self, block_number):
        self._maybe_fail()
        if block_number > self.head:
            return None
        return f"0x{block_number:064x}"

    def get_block(self, block_hash=None):
        number = int(block_hash, 16)
        extrinsics = [remark_extrinsic()] if number % 2 == 0 else []
        return {"header": {"number": number}, "extrinsics": extrinsics}

    def query(self, module, storage_function, params):
        self.queried.append((module, storage_function, params))
        return SimpleNamespace(value={"nonce": 1, "data": {"free": 100, "reserved": 0}})

    def close(self):
        self.closed = True


def make_wrapper(substrate, **kwargs):
    return SubstrateWrapper("paseo", "wss://example.invalid", retry_delay=0,
                            substrate_factory=lambda: substrate, **kwargs)


@pytest.mark.asyncio
async def test_fetch_blocks_keeps_order_and_decodes():
    wrapper = make_wrapper(FakeSubstrate(), connections=3)

    blocks = await wrapper.fetch_blocks([10, 11, 12, 13])

    assert [block.number for block in blocks] == [10, 11, 12, 13]
    assert [len(block.extrinsics) for block in blocks] == [1, 0, 1, 0]
    extrinsic = blocks[0].extrinsics[0]
    assert extrinsic.signer == ALICE
    assert extrinsic.call.is_call("Utility", "as_derivative")
    assert extrinsic.call.args[0] == 2


@pytest.mark.asyncio
async def test_fetch_blocks_opens_no_more_connections_than_configured():
    opened = []

    def counting_factory():
        substrate = FakeSubstrate()
        opened.append(substrate)
        return substrate

    wrapper = SubstrateWrapper("paseo", "wss://example.invalid", connections=2, retry_delay=0,
                               substrate_factory=counting_factory)

    blocks = await wrapper.fetch_blocks(list(range(1, 21)))

    assert [block.number for block in blocks] == list(range(1, 21))
    assert len(opened) == 2
    assert sum(substrate.calls for substrate in opened) == 20


@pytest.mark.asyncio
async def test_fetch_blocks_retries_transient_errors():
    substrate = FakeSubstrate(failures=2)
    wrapper = make_wrapper(substrate, connections=1, retry_limit=3)

    blocks = await wrapper.fetch_blocks([1, 2])

    assert [block.number for block in blocks] == [1, 2]


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [ConnectionError, SubstrateRequestException])
async def test_fetch_blocks_gives_up_after_retry_limit(error):
    substrate = FakeSubstrate(failures=100, error=error)
    wrapper = make_wrapper(substrate, connections=1, retry_limit=3)

    with pytest.raises(error):
        await wrapper.fetch_blocks([1])

    assert substrate.calls == 3


@pytest.mark.asyncio
async def test_fetch_blocks_beyond_head():
    wrapper = make_wrapper(FakeSubstrate(head=5))

    with pytest.raises(ValueError):
        await wrapper.fetch_blocks([5, 6])


@pytest.mark.asyncio
async def test_chain_information():
    wrapper = make_wrapper(FakeSubstrate(head=1234))

    assert wrapper.ss58_format == 42
    assert await wrapper.chain_name() == "Paseo Testnet"
    assert await wrapper.chain_head_number() == 1234
    assert await wrapper.has_call_function("Utility", "as_derivative")
    assert not await wrapper.has_call_function("Utility", "force_batch")


@pytest.mark.asyncio
async def test_account_info_queries_system_account():
    substrate = FakeSubstrate()
    wrapper = make_wrapper(substrate)

    info = await wrapper.account_info(ALICE)

    assert info == {"nonce": 1, "data": {"free": 100, "reserved": 0}}
    assert substrate.queried == [("System", "Account", [ALICE_ADDRESS])]


@pytest.mark.asyncio
async def test_close_closes_connections():
    substrate = FakeSubstrate()
    wrapper = make_wrapper(substrate)
    await wrapper.fetch_blocks([1])

    wrapper.close()

    assert substrate.closed
