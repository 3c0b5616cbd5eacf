import asyncio
import logging
from ratelimit import limits, sleep_and_retry
from substrateinterface import SubstrateInterface
from substrateinterface.exceptions import SubstrateRequestException
from websocket import WebSocketException
from subderive.decode.decode_extrinsic import decode_block
from subderive.derive.derivative_account import address_from_account_id

# public RPC nodes start dropping connections well before this
MAX_CALLS_PER_SEC = 50
RETRYABLE_ERRORS = (SubstrateRequestException, WebSocketException, ConnectionError, TimeoutError)


@sleep_and_retry                # be patient and sleep this thread to avoid exceeding the rate limit
@limits(calls=MAX_CALLS_PER_SEC, period=1)
def _rate_limited_call(function, *args, **kwargs):
    return function(*args, **kwargs)


class SubstrateWrapper:
    """
    Interface for reading blocks and account state from a substrate node over its websocket RPC.
    """

    def __init__(self, chain: str, url: str, connections: int = 4, retry_limit: int = 3, retry_delay: float = 0.5,
                 substrate_factory: callable = None):
        """
        :param chain: The name of the chain as used in the config.
        :type chain: str
        :param url: The websocket endpoint of the node, e.g. `wss://paseo-rpc.dwellir.com`
        :type url: str
        :param connections: How many websocket connections to open for parallel block fetching.
        :type connections: int
        :param retry_limit: How often a failed request is attempted before the error is raised.
        :type retry_limit: int
        :param retry_delay: Seconds to wait after the first failure. Grows linearly with each attempt.
        :type retry_delay: float
        :param substrate_factory: optional function without parameters that returns a connected
            `SubstrateInterface`. Defaults to connecting to `url`.
        :type substrate_factory: callable
        """
        self.logger = logging.getLogger(__name__)
        self.chain = chain
        self.url = url
        self.retry_limit = max(1, retry_limit)
        self.retry_delay = retry_delay
        self._connection_count = max(1, connections)

        if substrate_factory is None:
            def substrate_factory():
                return SubstrateInterface(url=url, auto_reconnect=True)
        self._substrate_factory = substrate_factory

        self.logger.info(f"Connecting to {url}...")
        self._connections = [substrate_factory()]
        self._pool = None
        self._pool_lock = None
        self._ss58_format = self._connections[0].ss58_format

    @property
    def ss58_format(self) -> int:
        return self._ss58_format

    async def _connection_pool(self) -> asyncio.Queue:
        # the queue and the lock have to be created inside the running loop
        if self._pool is not None:
            return self._pool
        if self._pool_lock is None:
            self._pool_lock = asyncio.Lock()
        async with self._pool_lock:
            if self._pool is None:
                while len(self._connections) < self._connection_count:
                    self._connections.append(await asyncio.to_thread(self._substrate_factory))
                pool = asyncio.Queue()
                for connection in self._connections:
                    pool.put_nowait(connection)
                self._pool = pool
                self.logger.debug(f"opened {len(self._connections)} connections to {self.url}")
        return self._pool

    async def _rpc(self, method: str, *args, **kwargs):
        """
        Run a blocking `SubstrateInterface` method on a worker thread, holding one pooled connection for the
        duration of the call.

        :param method: name of the `SubstrateInterface` method, like `get_block_hash`
        :type method: str
        """
        pool = await self._connection_pool()
        substrate = await pool.get()
        try:
            return await asyncio.to_thread(_rate_limited_call, getattr(substrate, method), *args, **kwargs)
        finally:
            pool.put_nowait(substrate)

    async def _with_retry(self, make_request):
        """
        Await `make_request()` until it succeeds or `retry_limit` attempts have failed.

        :param make_request: function without parameters returning an awaitable
        :type make_request: callable
        """
        error = None
        for attempt in range(1, self.retry_limit + 1):
            try:
                return await make_request()
            except RETRYABLE_ERRORS as e:
                error = e
                self.logger.warning(f"Retry {attempt}/{self.retry_limit} after error: {e}")
                await asyncio.sleep(self.retry_delay * attempt)
        raise error

    async def _gather(self, requests: list) -> list:
        """
        Like `asyncio.gather()`, but lets every request finish before raising the first error, so that no request
        of a failed attempt is still running when the next attempt starts.
        """
        results = await asyncio.gather(*requests, return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException):
                raise result
        return results

    async def chain_name(self) -> str:
        response = await self._with_retry(lambda: self._rpc("rpc_request", "system_chain", []))
        return str(response.get("result"))

    async def chain_head_number(self) -> int:
        async def fetch_head():
            head_hash = await self._rpc("get_chain_head")
            return await self._rpc("get_block_number", head_hash)
        return int(await self._with_retry(fetch_head))

    async def has_call_function(self, module: str, function: str) -> bool:
        """
        Checks the runtime metadata for a call function, e.g. `Utility`, `as_derivative`.
        """
        call_function = await self._with_retry(lambda: self._rpc("get_metadata_call_function", module, function))
        return call_function is not None

    async def fetch_blocks(self, block_numbers: list) -> list:
        """
        Fetches and decodes the given blocks. Requests go out in parallel, results keep the order of
        `block_numbers`.

        :param block_numbers: the block numbers to fetch
        :type block_numbers: list
        :return: list of `Block`
        :rtype: list
        """
        hashes = await self._with_retry(
            lambda: self._gather([self._rpc("get_block_hash", number) for number in block_numbers]))

        for number, block_hash in zip(block_numbers, hashes):
            if block_hash is None:
                raise ValueError(f"block {number} does not exist on {self.chain}")

        raw_blocks = await self._with_retry(
            lambda: self._gather([self._rpc("get_block", block_hash=block_hash) for block_hash in hashes]))

        for number, raw_block in zip(block_numbers, raw_blocks):
            if raw_block is None:
                raise ValueError(f"block {number} could not be read from {self.chain}")

        return [decode_block(number, raw_block) for number, raw_block in zip(block_numbers, raw_blocks)]

    async def account_info(self, account_id: bytes) -> dict:
        """
        Reads `System.Account` for an account.

        :param account_id: the raw 32 byte account id
        :type account_id: bytes
        :return: dict with `nonce` and `data.free` among others
        :rtype: dict
        """
        address = address_from_account_id(account_id, self.ss58_format)
        result = await self._with_retry(lambda: self._rpc("query", "System", "Account", [address]))
        return result.value

    def close(self):
        for connection in self._connections:
            connection.close()
        self._pool = None
        self._pool_lock = None
