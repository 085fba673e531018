"""
Decoding helpers for ERC-20 Transfer logs.

Logs may come from web3 (HexBytes topics and data) or from plain JSON-RPC
dicts (hex strings), so every helper accepts both.
"""

from typing import Any

from web3 import Web3


class TransferDecodeError(ValueError):
    """Raised when a log does not have the shape of an ERC-20 Transfer."""


def to_hex(value: Any) -> str:
    """Normalize bytes or a hex string to a lowercase 0x-prefixed string."""
    if isinstance(value, (bytes, bytearray)):
        return '0x' + bytes(value).hex()
    if isinstance(value, str):
        hex_str = value[2:] if value.startswith(('0x', '0X')) else value
        return '0x' + hex_str.lower()
    raise TransferDecodeError(f"Expected bytes or hex string, got {type(value).__name__}")


def pad_address(address: str) -> str:
    """Left-pad an address to a 32-byte topic."""
    return '0x' + address.lower().removeprefix('0x').rjust(64, '0')


def topic_to_address(topic: Any) -> str:
    """Extract the checksummed address held in the low 20 bytes of a topic."""
    hex_str = to_hex(topic)[2:]
    if len(hex_str) != 64:
        raise TransferDecodeError(f"Topic must be 32 bytes, got {len(hex_str) // 2}")
    try:
        int(hex_str, 16)
    except ValueError:
        raise TransferDecodeError(f"Topic is not hexadecimal: 0x{hex_str}") from None
    return Web3.to_checksum_address('0x' + hex_str[24:])


def decode_value(data: Any) -> int:
    """Decode the uint256 amount from the first word of the log data."""
    hex_str = to_hex(data)[2:]
    if len(hex_str) < 64:
        raise TransferDecodeError(f"Log data too short for a uint256: {len(hex_str) // 2} bytes")
    try:
        return int(hex_str[:64], 16)
    except ValueError:
        raise TransferDecodeError("Log data is not hexadecimal") from None


def decode_transfer(log: Any) -> tuple[str, str, int]:
    """
    Decode a Transfer log into (from, to, raw_value).

    Args:
        log: Mapping with 'topics' and 'data'

    Returns:
        Checksummed sender, checksummed recipient, amount in base units

    Raises:
        TransferDecodeError: If topics or data are malformed
    """
    if not hasattr(log, 'get'):
        raise TransferDecodeError(f"Log must be a mapping, got {type(log).__name__}")

    topics = log.get('topics') or []
    if len(topics) < 3:
        raise TransferDecodeError(f"Transfer log needs 3 topics, got {len(topics)}")

    sender = topic_to_address(topics[1])
    recipient = topic_to_address(topics[2])
    raw_value = decode_value(log.get('data'))
    return sender, recipient, raw_value


def format_units(raw_value: int, decimals: int) -> str:
    """
    Scale a base-unit amount by 10**decimals using integer arithmetic only.

    Trailing zeros of the fractional part are dropped, e.g.
    format_units(1_500_000_000_000_000_000, 18) == "1.5".
    """
    if raw_value < 0:
        raise ValueError(f"Amount must be non-negative, got {raw_value}")
    if decimals < 0:
        raise ValueError(f"Decimals must be non-negative, got {decimals}")

    whole, fraction = divmod(raw_value, 10 ** decimals)
    if not fraction:
        return str(whole)
    fraction_str = str(fraction).rjust(decimals, '0').rstrip('0')
    return f"{whole}.{fraction_str}"


def parse_block_number(value: Any) -> int:
    """Block numbers arrive as ints from web3 and as hex strings from raw RPC."""
    if isinstance(value, bool):
        raise TransferDecodeError(f"Invalid block number: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 16) if value.startswith('0x') else int(value)
        except ValueError:
            raise TransferDecodeError(f"Invalid block number: {value!r}") from None
    raise TransferDecodeError(f"Invalid block number: {value!r}")
