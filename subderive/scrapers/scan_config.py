import copy
from subderive.scrapers.call_matcher import DEFAULT_MAX_DEPTH

DEFAULT_BATCH_SIZE = 20
DEFAULT_LAST_BLOCKS = 1000
DEFAULT_CONNECTIONS = 4
DEFAULT_RETRY_LIMIT = 3
DEFAULT_RETRY_DELAY = 0.5
DEFAULT_INDICES = 10
DEFAULT_OUT_DIR = "data/derivatives"


class ScanConfig:
    def __init__(self, config):
        self.skip = False
        self.rpc_ws = None
        self.out_dir = DEFAULT_OUT_DIR
        self.batch_size = DEFAULT_BATCH_SIZE
        self.start_block = None
        self.end_block = None
        self.last_blocks = DEFAULT_LAST_BLOCKS
        self.max_depth = DEFAULT_MAX_DEPTH
        self.connections = DEFAULT_CONNECTIONS
        self.retry_limit = DEFAULT_RETRY_LIMIT
        self.retry_delay = DEFAULT_RETRY_DELAY
        self.indices = DEFAULT_INDICES
        self._set_config(config)

    def _set_config(self, config):
        """
        Extract the `_` prefixed metadata of a config level. Keys that are absent keep the value inherited
        from the outer level.

        :param config: JSON dict of the scan config
        :type config: dict
        """
        if type(config) is not dict:
            return

        skip = config.get("_skip", None)
        if skip is not None:
            self.skip = skip

        rpc_ws = config.get("_rpc_ws", None)
        if rpc_ws is not None:
            self.rpc_ws = rpc_ws

        out_dir = config.get("_out_dir", None)
        if out_dir is not None:
            self.out_dir = out_dir

        for key in ["batch_size", "start_block", "end_block", "last_blocks", "max_depth", "connections",
                    "retry_limit", "indices"]:
            value = config.get(f"_{key}", None)
            if value is not None:
                setattr(self, key, int(value))

        retry_delay = config.get("_retry_delay", None)
        if retry_delay is not None:
            self.retry_delay = float(retry_delay)

    def create_inner_config(self, config):
        """
        creates a config that can be nested to lower layers

        :param config: JSON dict of the scan config
        :type config: dict
        """
        result = copy.deepcopy(self)
        result._set_config(config)
        return result
