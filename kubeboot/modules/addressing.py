"""IPv4 address allocation for planned machines.

Worker addresses are derived from the coordinator address by dotted-quad
increment with carry. A generic string successor works digit by digit and
knows nothing about octet boundaries, so every octet is handled as an integer.
"""
from typing import List, Tuple

from kubeboot.errors import AddressRangeExhausted, ConfigError, MalformedAddress

MAX_WORKERS = 254

Octets = Tuple[int, int, int, int]


def parse_address(address: str) -> Octets:
    """Parse a dotted-quad string into four integer octets."""
    if not isinstance(address, str):
        raise MalformedAddress(f"Address must be a string, got {type(address).__name__}")
    parts = address.strip().split(".")
    if len(parts) != 4:
        raise MalformedAddress(f"Malformed IPv4 address: '{address}'")
    octets = []
    for part in parts:
        if not (part.isascii() and part.isdigit()) or (len(part) > 1 and part.startswith("0")):
            raise MalformedAddress(f"Malformed IPv4 address: '{address}'")
        value = int(part)
        if value > 255:
            raise MalformedAddress(f"Octet out of range in '{address}'")
        octets.append(value)
    return tuple(octets)


def format_address(octets: Octets) -> str:
    return ".".join(str(o) for o in octets)


def next_address(address: str) -> str:
    """Return the dotted-quad successor of ``address``.

    The last octet is incremented; a 255 rolls over to 0 and carries into the
    next higher octet. Carrying out of the first octet raises
    AddressRangeExhausted.
    """
    octets = list(parse_address(address))
    index = 3
    while index >= 0:
        if octets[index] < 255:
            octets[index] += 1
            return format_address(tuple(octets))
        octets[index] = 0
        index -= 1
    raise AddressRangeExhausted(f"No IPv4 address follows {address}")


def allocate(base: str, count: int) -> List[str]:
    """Allocate ``count`` consecutive addresses after ``base``."""
    parse_address(base)
    if count < 0:
        raise ConfigError(f"Worker count must not be negative, got {count}")
    if count > MAX_WORKERS:
        raise AddressRangeExhausted(
            f"Cannot allocate {count} workers after {base}: at most {MAX_WORKERS} are supported"
        )

    addresses = []
    current = base
    for _ in range(count):
        current = next_address(current)
        addresses.append(current)
    return addresses
