import logging
import os
from datetime import datetime
from subderive.apis.substrate_wrapper import SubstrateWrapper
from subderive.db.json_array_writer import JsonArrayWriter, ListSink, write_summary
from subderive.decode.decode_extrinsic import Block, normalize_name
from subderive.derive.derivative_account import account_id_from_address, address_from_account_id, derive_account
from subderive.exceptions import ConfigurationError
from subderive.scrapers.call_matcher import ScanCounters, match_derivative_calls, UTILITY_MODULE, BATCH_FUNCTIONS
from subderive.scrapers.scan_config import ScanConfig

# ranges shorter than this get every extrinsic logged
DETAILED_LOG_BLOCKS = 10


class DerivativeScraper:
    """Scan a substrate chain for `utility.as_derivative` calls and probe derivative accounts."""

    def __init__(self, api):
        self.logger = logging.getLogger(__name__)
        self.api: SubstrateWrapper = api

    async def scrape(self, operations, chain_config: ScanConfig) -> list:
        """Performs all the operations it was given by determining the operation and then calling the corresponding
        method.

        :param operations: A dict of operations and their subdicts, e.g. `blocks` and `derivatives`
        :type operations: dict
        :param chain_config: the `ScanConfig` to bubble down configuration properties
        :type chain_config: ScanConfig
        :return: A list of scraped items
        """
        items = []

        for operation in operations:
            if operation.startswith("_"):
                continue

            payload = operations[operation]
            operation_config = chain_config.create_inner_config(payload)
            if operation_config.skip:
                self.logger.info(f"Config asks to skip {operation}")
                continue

            if operation == "blocks":
                new_items = await self.scrape_blocks(operation_config)
            elif operation == "derivatives":
                accounts = payload.get("accounts", []) if type(payload) is dict else payload
                new_items = []
                for account in accounts or []:
                    new_items.extend(await self.check_account_derivatives(account, operation_config.indices))
            else:
                raise ConfigurationError(f"config contained an operation that does not exist: {operation}")

            items.extend(new_items)

        return items

    async def resolve_range(self, config: ScanConfig) -> tuple:
        """
        Determines the block range to scan. Without explicit bounds the range ends at the chain head and spans
        `last_blocks` blocks.

        :return: `(start_block, end_block)`, both inclusive
        :rtype: tuple
        """
        end_block = config.end_block
        if end_block is None:
            end_block = await self.api.chain_head_number()

        start_block = config.start_block
        if start_block is None:
            start_block = max(1, end_block - config.last_blocks)

        if start_block > end_block:
            raise ConfigurationError(f"start block {start_block} is after end block {end_block}")
        return start_block, end_block

    async def scrape_blocks(self, config: ScanConfig) -> list:
        """
        Scans a block range and writes the matches and a summary to `config.out_dir`.

        :param config: the `ScanConfig` of the `blocks` operation
        :type config: ScanConfig
        :return: the matches, as dicts
        :rtype: list
        """
        chain_name = await self.api.chain_name()
        self.logger.info(f"Connected to {chain_name}")

        if await self.api.has_call_function("Utility", "as_derivative"):
            self.logger.info("Utility.as_derivative is available in the runtime")
        else:
            self.logger.warning("Utility.as_derivative is missing from the runtime metadata. Expect no matches.")

        start_block, end_block = await self.resolve_range(config)
        ss58_format = self.api.ss58_format
        details_path = os.path.join(config.out_dir, f"derived_details-{self.api.chain}.json")
        summary_path = os.path.join(config.out_dir, f"derived_summary-{self.api.chain}.json")

        with JsonArrayWriter(details_path, ss58_format) as writer:
            sink = ListSink(forward_to=writer)
            counters, summary = await self.scan_blocks(start_block, end_block, config, sink, chain_name)

        write_summary(summary_path, summary)
        self._log_summary(summary)
        self.logger.info(f"Details saved to {details_path}, summary saved to {summary_path}")

        return [record.to_dict(ss58_format) for record in sink.records]

    async def scan_blocks(self, start_block: int, end_block: int, config: ScanConfig, sink,
                          chain_name: str = None) -> tuple:
        """
        Fetches the blocks `start_block` to `end_block` in batches and reports every derivative call to the sink.
        Blocks are processed in ascending order. A batch that still fails after the client's retries, or that
        cannot be decoded, is logged with its traceback, recorded in the summary and skipped.

        :param start_block: first block to scan
        :type start_block: int
        :param end_block: last block to scan, inclusive
        :type end_block: int
        :param config: the `ScanConfig`
        :type config: ScanConfig
        :param sink: receives every `MatchRecord` through `emit()`
        :param chain_name: the name the node reports for itself, used in the summary
        :type chain_name: str
        :return: `(ScanCounters, summary dict)`
        :rtype: tuple
        """
        counters = ScanCounters()
        failed_batches = []
        block_count = end_block - start_block + 1
        batch_size = max(1, config.batch_size)
        block_numbers = list(range(start_block, end_block + 1))
        batches = [block_numbers[i:i + batch_size] for i in range(0, len(block_numbers), batch_size)]
        detailed = block_count < DETAILED_LOG_BLOCKS

        self.logger.info(f"Scanning blocks {start_block} -> {end_block} ({block_count} blocks) "
                         f"in batches of {batch_size}")
        started = datetime.now()

        for batch_index, batch in enumerate(batches):
            try:
                blocks = await self.api.fetch_blocks(batch)
            except Exception as e:
                self.logger.error(f"Error in batch {batch[0]}-{batch[-1]}: {e}", exc_info=True)
                failed_batches.append([batch[0], batch[-1]])
                continue

            for block in blocks:
                if detailed:
                    self.describe_block(block)
                self.process_block(block, counters, sink, config.max_depth)

            elapsed = (datetime.now() - started).total_seconds()
            progress = (batch_index + 1) / len(batches) * 100
            rate = (batch[-1] - start_block + 1) / elapsed if elapsed > 0 else 0
            self.logger.info(f"Batch {batch_index + 1}/{len(batches)} ({progress:.1f}%) - {rate:.1f} blocks/s")

        elapsed = (datetime.now() - started).total_seconds()
        summary = {
            "chain": chain_name,
            "scanned_blocks": block_count,
            "start_block": start_block,
            "end_block": end_block,
            "total_derivatives": counters.total,
            "unique_accounts": len(counters.unique_derived_accounts),
            "total_extrinsics": counters.total_extrinsics,
            "utility_extrinsics": counters.utility_extrinsics,
            "utility_functions_found": dict(counters.utility_functions),
            "malformed_calls": counters.malformed_calls,
            "failed_batches": failed_batches,
            "processing_time": f"{elapsed:.2f}s",
            "blocks_per_second": round(block_count / elapsed, 2) if elapsed > 0 else None,
            "timestamp": datetime.now().isoformat(),
        }
        return counters, summary

    def process_block(self, block: Block, counters: ScanCounters, sink, max_depth: int):
        """
        Runs the call matcher on every signed `Utility` extrinsic of a block, in block order.
        """
        for extrinsic in block.extrinsics:
            counters.total_extrinsics += 1

            if extrinsic.signer is None:
                continue
            if normalize_name(extrinsic.call.module) != UTILITY_MODULE:
                continue

            counters.utility_extrinsics += 1
            counters.count_utility_function(extrinsic.call.function)

            match_derivative_calls(
                extrinsic.call,
                block.number,
                extrinsic.index,
                extrinsic.signer,
                counters,
                sink,
                max_depth=max_depth
            )

    def describe_block(self, block: Block):
        self.logger.info(f"Block {block.number}: {len(block.extrinsics)} extrinsics")
        for extrinsic in block.extrinsics:
            call = extrinsic.call
            if extrinsic.signer is None:
                signer = "None"
            else:
                signer = address_from_account_id(extrinsic.signer, self.api.ss58_format)
            self.logger.info(f"  extrinsic {extrinsic.index}: {call.name}, signer {signer}")

            if any(call.is_call(UTILITY_MODULE, function) for function in BATCH_FUNCTIONS) \
                    and len(call.args) > 0 and isinstance(call.args[0], (list, tuple)):
                self.logger.info(f"    {call.function} contains {len(call.args[0])} calls:")
                for i, nested in enumerate(call.args[0]):
                    name = nested.name if hasattr(nested, "name") else repr(nested)
                    self.logger.info(f"      {i}: {name}")

    def _log_summary(self, summary: dict):
        self.logger.info("=" * 60)
        self.logger.info(f"Scan of {summary['chain']} completed in {summary['processing_time']} "
                         f"({summary['blocks_per_second']} blocks/s)")
        self.logger.info(f"Extrinsics: {summary['total_extrinsics']}, utility extrinsics: "
                         f"{summary['utility_extrinsics']}")
        self.logger.info(f"as_derivative found: {summary['total_derivatives']}, unique derived accounts: "
                         f"{summary['unique_accounts']}")
        for function, count in summary["utility_functions_found"].items():
            self.logger.info(f"  utility.{function}: {count}")
        if len(summary["failed_batches"]) > 0:
            self.logger.warning(f"{len(summary['failed_batches'])} batches failed: {summary['failed_batches']}")
        if summary["total_derivatives"] == 0:
            self.logger.warning("No as_derivative found. Try a wider block range or check the chain on an explorer.")

    async def check_account_derivatives(self, account, indices: int) -> list:
        """
        Derives the first `indices` derivative accounts of `account` and reports the ones that have a free
        balance or a nonce.

        :param account: the parent account, as SS58 address or hex
        :type account: str
        :param indices: how many derivative indices to probe, starting at 0
        :type indices: int
        :return: one dict per active derivative account
        :rtype: list
        """
        parent = account_id_from_address(account)
        ss58_format = self.api.ss58_format
        self.logger.info(f"Checking {indices} derivative accounts of {account}")

        active = []
        for index in range(indices):
            derived = derive_account(parent, index)
            info = await self.api.account_info(derived)
            free = int(info["data"]["free"])
            nonce = int(info["nonce"])
            if free > 0 or nonce > 0:
                derived_address = address_from_account_id(derived, ss58_format)
                self.logger.info(f"Index {index}: {derived_address} has balance {free} and nonce {nonce}")
                active.append({
                    "account": account,
                    "index": index,
                    "derived_account": derived_address,
                    "free": free,
                    "nonce": nonce,
                })

        if len(active) == 0:
            self.logger.info(f"No active derivative accounts among the first {indices} indices of {account}")
        return active
