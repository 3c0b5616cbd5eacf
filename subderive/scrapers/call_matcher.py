import logging
from dataclasses import dataclass, field
from subderive.decode.decode_extrinsic import Call, to_json_value
from subderive.derive.derivative_account import derive_account, address_from_account_id, DEFAULT_SS58_FORMAT
from subderive.exceptions import MalformedCall

UTILITY_MODULE = "utility"
DERIVATIVE_FUNCTION = "as_derivative"
# force_batch is not descended into
BATCH_FUNCTIONS = ("batch", "batch_all")
DEFAULT_MAX_DEPTH = 16

logger = logging.getLogger(__name__)


@dataclass
class MatchRecord:
    block_number: int
    extrinsic_index: int
    signer: bytes
    derivative_index: int
    derived_account: bytes
    inner_call: str
    inner_call_args: list

    def to_dict(self, ss58_format: int = DEFAULT_SS58_FORMAT) -> dict:
        return {
            "block": self.block_number,
            "extrinsic_index": self.extrinsic_index,
            "signer": address_from_account_id(self.signer, ss58_format),
            "derivative_index": self.derivative_index,
            "derived_account": address_from_account_id(self.derived_account, ss58_format),
            "inner_call": self.inner_call,
            "inner_call_args": self.inner_call_args,
        }


@dataclass
class ScanCounters:
    """Statistics of a single scan. Created by the caller and passed down by reference."""
    total: int = 0
    unique_derived_accounts: set = field(default_factory=set)
    total_extrinsics: int = 0
    utility_extrinsics: int = 0
    utility_functions: dict = field(default_factory=dict)
    malformed_calls: int = 0

    def count_utility_function(self, function: str):
        self.utility_functions[function] = self.utility_functions.get(function, 0) + 1


def _is_utility_call(call: Call, functions) -> bool:
    return any(call.is_call(UTILITY_MODULE, function) for function in functions)


def _derivative_record(call, block_number, extrinsic_index, signer) -> MatchRecord:
    if len(call.args) < 2:
        raise MalformedCall(f"{call.name} expects an index and a call, got {len(call.args)} arguments")
    index, inner_call = call.args[0], call.args[1]
    if isinstance(index, bool) or not isinstance(index, int):
        raise MalformedCall(f"{call.name} index is not an integer: {index!r}")
    if not isinstance(inner_call, Call):
        raise MalformedCall(f"{call.name} inner call could not be decoded: {inner_call!r}")

    derivative_index = index & 0xFF
    return MatchRecord(
        block_number=block_number,
        extrinsic_index=extrinsic_index,
        signer=signer,
        derivative_index=derivative_index,
        derived_account=derive_account(signer, derivative_index),
        inner_call=inner_call.name,
        inner_call_args=[to_json_value(arg) for arg in inner_call.args],
    )


def _batched_calls(call: Call) -> tuple:
    if len(call.args) < 1 or not isinstance(call.args[0], (list, tuple)):
        raise MalformedCall(f"{call.name} does not carry a list of calls")
    return tuple(call.args[0])


def match_derivative_calls(call: Call, block_number: int, extrinsic_index: int, signer: bytes,
                           counters: ScanCounters, sink, max_depth: int = DEFAULT_MAX_DEPTH) -> int:
    """
    Walks a call tree depth first and reports every `utility.as_derivative` it finds, including the ones nested
    in `utility.batch` and `utility.batch_all` calls. Nested calls share the block, extrinsic and signer of the
    extrinsic they belong to.

    A call that does not have the expected shape, or is nested deeper than `max_depth`, is skipped and counted
    in `counters.malformed_calls`. The rest of the tree is still examined.

    :param call: the top level call of the extrinsic
    :type call: Call
    :param block_number: the block the extrinsic is in
    :type block_number: int
    :param extrinsic_index: the index of the extrinsic within the block
    :type extrinsic_index: int
    :param signer: raw account id of the extrinsic's signer
    :type signer: bytes
    :param counters: accumulator for the whole scan
    :type counters: ScanCounters
    :param sink: receives one `MatchRecord` per match through `emit()`
    :param max_depth: the deepest nesting level that is still examined. The top level call is depth 0.
    :type max_depth: int
    :return: the number of matches found in this tree
    :rtype: int
    """
    matches = 0
    stack = [(call, 0)]
    while len(stack) > 0:
        current, depth = stack.pop()
        try:
            if not isinstance(current, Call):
                raise MalformedCall(f"expected a call, got {type(current).__name__}")
            if depth > max_depth:
                raise MalformedCall(f"call nested deeper than {max_depth} levels")

            if _is_utility_call(current, (DERIVATIVE_FUNCTION,)):
                record = _derivative_record(current, block_number, extrinsic_index, signer)
                counters.total += 1
                counters.unique_derived_accounts.add(record.derived_account)
                matches += 1
                logger.info(f"found as_derivative #{counters.total} in block {block_number}, "
                            f"extrinsic {extrinsic_index}, index {record.derivative_index}")
                sink.emit(record)
            elif _is_utility_call(current, BATCH_FUNCTIONS):
                nested = _batched_calls(current)
                if depth == 0 and len(nested) > 0:
                    logger.debug(f"checking {current.function} with {len(nested)} calls")
                # reversed so that the calls pop off the stack in array order
                for nested_call in reversed(nested):
                    stack.append((nested_call, depth + 1))
        except MalformedCall as e:
            counters.malformed_calls += 1
            logger.warning(f"block {block_number}, extrinsic {extrinsic_index}: skipping malformed call: {e}")

    return matches
