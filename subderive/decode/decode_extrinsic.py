import logging
from dataclasses import dataclass, field
from typing import Optional
from subderive.derive.derivative_account import account_id_from_address
from subderive.exceptions import InvalidAccountFormat, MalformedCall

MAX_DECODE_DEPTH = 64

logger = logging.getLogger(__name__)


def normalize_name(name: str) -> str:
    """`batchAll`, `batch_all` and `BatchAll` all normalize to `batchall`."""
    return name.replace("_", "").lower()


@dataclass(frozen=True)
class Call:
    """A decoded call. Arguments that are calls are `Call`, arguments that are lists of calls are tuples of `Call`."""
    module: str
    function: str
    args: tuple = ()

    def is_call(self, module: str, function: str) -> bool:
        return normalize_name(self.module) == normalize_name(module) \
            and normalize_name(self.function) == normalize_name(function)

    @property
    def name(self) -> str:
        return f"{self.module}.{self.function}"

    def to_dict(self) -> dict:
        return {
            "call_module": self.module,
            "call_function": self.function,
            "call_args": [to_json_value(arg) for arg in self.args],
        }


@dataclass
class Extrinsic:
    index: int
    signer: Optional[bytes]
    call: Call


@dataclass
class Block:
    number: int
    extrinsics: list = field(default_factory=list)


def to_json_value(value):
    """Convert decoded argument values into something `json.dumps` accepts."""
    if isinstance(value, Call):
        return value.to_dict()
    if isinstance(value, (list, tuple)):
        return [to_json_value(v) for v in value]
    if isinstance(value, dict):
        return {k: to_json_value(v) for k, v in value.items()}
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    return value


def _looks_like_call(value) -> bool:
    return isinstance(value, dict) and "call_module" in value and "call_function" in value


def _decode_arg(value, depth):
    if _looks_like_call(value):
        return decode_call(value, depth + 1)
    # elements that are not calls are kept raw, next to the decoded ones
    if isinstance(value, (list, tuple)) and any(_looks_like_call(v) for v in value):
        return tuple(decode_call(v, depth + 1) if _looks_like_call(v) else v for v in value)
    return value


def decode_call(value: dict, depth: int = 0) -> Call:
    """
    Decode a call dict as produced by substrate-interface into a `Call`.

    :param value: dict with `call_module`, `call_function` and `call_args`
    :type value: dict
    :param depth: the nesting depth of this call, used to bail out of pathological inputs
    :type depth: int
    :return: the decoded call
    :rtype: Call
    """
    if depth > MAX_DECODE_DEPTH:
        raise MalformedCall(f"call nesting exceeds {MAX_DECODE_DEPTH} levels")
    if not _looks_like_call(value):
        raise MalformedCall(f"not a call: {value!r}")

    call_args = value.get("call_args") or []
    args = []
    for arg in call_args:
        # substrate-interface wraps each argument as {"name": ..., "type": ..., "value": ...}
        if isinstance(arg, dict) and "value" in arg:
            args.append(_decode_arg(arg["value"], depth))
        else:
            args.append(_decode_arg(arg, depth))

    return Call(str(value["call_module"]), str(value["call_function"]), tuple(args))


def _signer_from_address(address) -> Optional[bytes]:
    # MultiAddress renders as {"Id": "0x..."} in some runtime versions
    if isinstance(address, dict):
        address = address.get("Id")
    if address is None:
        return None
    try:
        return account_id_from_address(address)
    except InvalidAccountFormat as e:
        logger.debug(f"ignoring signer that is not a 32 byte account: {e}")
        return None


def decode_extrinsic(index: int, extrinsic) -> Extrinsic:
    """
    Decode an extrinsic returned by `SubstrateInterface.get_block()`.

    :param index: position of the extrinsic within its block
    :type index: int
    :param extrinsic: a `GenericExtrinsic` or its `.value` dict
    :return: the decoded extrinsic
    :rtype: Extrinsic
    """
    value = getattr(extrinsic, "value", extrinsic)
    signer = _signer_from_address(value.get("address"))
    call = decode_call(value["call"])
    return Extrinsic(index, signer, call)


def decode_block(block_number: int, block: dict) -> Block:
    """
    Decode the result of `SubstrateInterface.get_block()`. Extrinsics that cannot be decoded are logged and
    dropped, everything else keeps its original index.
    """
    result = Block(block_number)
    for index, extrinsic in enumerate(block.get("extrinsics") or []):
        try:
            result.extrinsics.append(decode_extrinsic(index, extrinsic))
        except (MalformedCall, KeyError, TypeError) as e:
            logger.warning(f"block {block_number}: skipping extrinsic {index} that could not be decoded: {e}")
    return result
