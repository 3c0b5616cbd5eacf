import argparse
import asyncio
import logging
import os
from pathlib import Path
import sys
sys.path.append(str(Path(__file__).resolve().parent.parent))
import subderive


def config_from_env(check: bool) -> dict:
    """
    Builds a scan config from environment variables:

    `CHAIN` (default `paseo`), `RPC_WS`, `START_BLOCK`, `END_BLOCK`, `BLOCKS` (scan the last n blocks),
    `BATCH_SIZE`, `OUT_DIR` and, with `--check`, `ACCOUNT` and `INDICES`.
    """
    chain = os.environ.get("CHAIN", "paseo")
    chain_config = {
        "_rpc_ws": os.environ.get("RPC_WS"),
        "_out_dir": os.environ.get("OUT_DIR"),
        "_batch_size": os.environ.get("BATCH_SIZE"),
    }

    if check:
        account = os.environ.get("ACCOUNT")
        if not account:
            raise SystemExit("Specify an account: ACCOUNT=5GrwvaEF... python bin/find_derivatives.py --check")
        chain_config["derivatives"] = {
            "_indices": os.environ.get("INDICES"),
            "accounts": [account],
        }
    else:
        chain_config["blocks"] = {
            "_start_block": os.environ.get("START_BLOCK"),
            "_end_block": os.environ.get("END_BLOCK"),
            "_last_blocks": os.environ.get("BLOCKS"),
        }

    return {chain: chain_config}


async def main():
    parser = argparse.ArgumentParser(description="Find utility.as_derivative calls or probe derivative accounts")
    parser.add_argument("--check", action="store_true",
                        help="probe the derivative accounts of $ACCOUNT instead of scanning blocks")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(name)s - %(message)s')

    config = config_from_env(args.check)
    items = await subderive.scan(config)

    if not args.check and len(items) > 0:
        first = items[0]
        logging.info(f"Use this block for a closer look: START_BLOCK={first['block']} END_BLOCK={first['block']} "
                     f"python bin/find_derivatives.py")


if __name__ == "__main__":
    asyncio.run(main())
