import logging
from subderive.apis.substrate_wrapper import SubstrateWrapper
from subderive.exceptions import ConfigurationError
from subderive.scrapers.derivative_scraper import DerivativeScraper
from subderive.scrapers.scan_config import ScanConfig

logger = logging.getLogger(__name__)

KNOWN_ENDPOINTS = {
    "paseo": "wss://paseo-rpc.dwellir.com",
    "asset-hub-paseo": "wss://asset-hub-paseo-rpc.n.dwellir.com",
}


def substrate_factory(chain, chain_config: ScanConfig):
    """
    Return a configured substrate RPC interface

    :param chain: name of the specific substrate chain
    :type chain: str
    :param chain_config: configuration for the specific chain
    :type chain_config: ScanConfig
    """
    url = chain_config.rpc_ws
    if url is None:
        url = KNOWN_ENDPOINTS.get(chain)
    if url is None:
        raise ConfigurationError(f"no `_rpc_ws` endpoint configured for unknown chain {chain}")

    return SubstrateWrapper(
        chain,
        url,
        connections=chain_config.connections,
        retry_limit=chain_config.retry_limit,
        retry_delay=chain_config.retry_delay
    )


def scraper_factory(chain_name, chain_config: ScanConfig, api_factory: callable = None):
    """
    Configure and return a scraper for a substrate chain

    :param chain_name: name of the specific chain
    :type chain_name: str
    :param chain_config: configuration for the specific chain
    :type chain_config: ScanConfig
    :param api_factory: optional function to create the chain client. takes the chain name and config as parameters
    :type api_factory: callable
    """
    if api_factory is None:
        api_factory = substrate_factory
    api = api_factory(chain_name, chain_config)
    return DerivativeScraper(api)


async def scan(chains_config, api_factory=None) -> list:
    """
    For each specified chain, get a scraper and perform the operations the config asks for.

    :param chains_config: dict of chains to scan, see `config/scan_config.json`
    :type chains_config: dict
    :param api_factory: optional function to create the chain client. takes the chain name and config as parameters
    :type api_factory: function
    :return: the list of scraped items
    """
    items = []

    try:
        scan_config = ScanConfig(chains_config)

        for chain_name in chains_config:
            if chain_name.startswith("_"):
                if chain_name == "_version" and chains_config[chain_name] != 1:
                    logger.warning("config version != 1. It could contain runtime breaking contents")
                continue
            operations = chains_config[chain_name]
            chain_config = scan_config.create_inner_config(operations)

            # check if we should skip this chain
            if chain_config.skip:
                logger.info(f"Config asks to skip chain {chain_name}")
                continue

            scraper = scraper_factory(chain_name, chain_config, api_factory)
            try:
                new_items = await scraper.scrape(operations, chain_config)
            finally:
                scraper.api.close()
            items.extend(new_items)
    except Exception as e:
        logger.error(f"Uncaught error during scanning: {e}")
        import traceback
        logger.error(f"Traceback: {traceback.format_exc()}")
        raise e

    logger.info(f"Scanned {len(items)} items")
    return items

