from substrateinterface.utils.hasher import blake2_256
from substrateinterface.utils import ss58
from subderive.exceptions import InvalidAccountFormat

#: bytes: the prefix the utility pallet hashes in front of the parent account
DERIVATION_PREFIX = b"modlpy/utilisuba"
ACCOUNT_ID_LENGTH = 32
DEFAULT_SS58_FORMAT = 42


def derive_account(parent: bytes, index: int) -> bytes:
    """
    Compute the derivative sub-account that `utility.as_derivative` dispatches from.

    Only the low 8 bits of the index are used, so `index` and `index + 256` yield the same account.

    :param parent: the raw 32 byte account id of the signer
    :type parent: bytes
    :param index: the derivative index chosen by the signer
    :type index: int
    :return: the raw 32 byte derived account id
    :rtype: bytes
    """
    if not isinstance(parent, (bytes, bytearray)) or len(parent) != ACCOUNT_ID_LENGTH:
        raise InvalidAccountFormat(f"expected a {ACCOUNT_ID_LENGTH} byte account id, got {parent!r}")

    raw = DERIVATION_PREFIX + bytes(parent) + bytes([index & 0xFF])
    return blake2_256(raw)


def account_id_from_address(value) -> bytes:
    """
    Turn an address as it appears in configs and decoded extrinsics into a raw account id.

    :param value: SS58 address, `0x` prefixed hex string or raw bytes
    :type value: str or bytes
    :return: the raw 32 byte account id
    :rtype: bytes
    """
    if isinstance(value, (bytes, bytearray)):
        account_id = bytes(value)
    elif isinstance(value, str):
        try:
            if value.startswith("0x"):
                account_id = bytes.fromhex(value[2:])
            else:
                account_id = bytes.fromhex(ss58.ss58_decode(value))
        except ValueError as e:
            raise InvalidAccountFormat(f"cannot decode address {value!r}: {e}") from e
    else:
        raise InvalidAccountFormat(f"unsupported account representation {type(value).__name__}")

    if len(account_id) != ACCOUNT_ID_LENGTH:
        raise InvalidAccountFormat(f"expected a {ACCOUNT_ID_LENGTH} byte account id, got {len(account_id)} bytes")
    return account_id


def address_from_account_id(account_id: bytes, ss58_format: int = DEFAULT_SS58_FORMAT) -> str:
    """
    Render a raw account id as SS58 text.

    :param account_id: the raw 32 byte account id
    :type account_id: bytes
    :param ss58_format: the address format of the chain
    :type ss58_format: int
    """
    if len(account_id) != ACCOUNT_ID_LENGTH:
        raise InvalidAccountFormat(f"expected a {ACCOUNT_ID_LENGTH} byte account id, got {len(account_id)} bytes")
    return ss58.ss58_encode(bytes(account_id), ss58_format=ss58_format)
