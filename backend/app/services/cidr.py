"""
CIDR subnet model.

Parses "a.b.c.d/n" strings into 32-bit network descriptors, expands them into
their usable host addresses and joins the expansion against the IP-to-asset
associations fetched by the caller. Everything here is pure: no database
access, no I/O.

Prefix lengths are restricted to /20-/32 so that an expansion never exceeds
4094 addresses.
"""
import re
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Union

MIN_PREFIX = 20
MAX_PREFIX = 32
ALL_ONES = 0xFFFFFFFF

INVALID_CIDR_MESSAGE = (
    "Invalid CIDR format. Use notation like 192.168.1.0/24 (prefix must be /20-/32)"
)

_CIDR_RE = re.compile(r"^(\d{1,3})\.(\d{1,3})\.(\d{1,3})\.(\d{1,3})/(\d{1,2})$", re.ASCII)


class InvalidCidrError(ValueError):
    """Raised when a CIDR string fails validation."""

    def __init__(self, cidr: str, reason: str):
        self.cidr = cidr
        self.reason = reason
        super().__init__(f"{INVALID_CIDR_MESSAGE}: {reason}")


@dataclass(frozen=True)
class CidrNetwork:
    network_address: int
    prefix_length: int
    usable_host_count: int

    ok = True

    @property
    def netmask(self) -> int:
        return prefix_mask(self.prefix_length)

    def __str__(self) -> str:
        return f"{int_to_ip(self.network_address)}/{self.prefix_length}"


@dataclass(frozen=True)
class CidrRejection:
    cidr: str
    reason: str

    ok = False


CidrResult = Union[CidrNetwork, CidrRejection]


@dataclass(frozen=True)
class SubnetAddress:
    ip: str
    asset: Optional[Any] = None
    label: Optional[str] = None

    @property
    def is_free(self) -> bool:
        return self.asset is None


def prefix_mask(prefix_length: int) -> int:
    if prefix_length == 32:
        return ALL_ONES
    return ~(ALL_ONES >> prefix_length) & ALL_ONES


def usable_host_count(prefix_length: int) -> int:
    """Hosts excluding network and broadcast; a /32 is a single point address."""
    if prefix_length == 32:
        return 1
    return (1 << (32 - prefix_length)) - 2


def int_to_ip(value: int) -> str:
    value &= ALL_ONES
    return f"{(value >> 24) & 255}.{(value >> 16) & 255}.{(value >> 8) & 255}.{value & 255}"


def ip_to_int(address: str) -> int:
    """Pack a dotted quad into an unsigned 32-bit integer (big-endian)."""
    parts = address.split(".")
    if len(parts) != 4 or not all(p.isascii() and p.isdigit() and len(p) <= 3 for p in parts):
        raise ValueError(f"Invalid IPv4 address: {address}")
    octets = [int(p) for p in parts]
    if any(o > 255 for o in octets):
        raise ValueError(f"Invalid IPv4 address: {address}")
    return ((octets[0] << 24) | (octets[1] << 16) | (octets[2] << 8) | octets[3]) & ALL_ONES


def parse_cidr(cidr: str) -> CidrResult:
    """Validate and decode a CIDR string.

    Returns a CidrNetwork on success, otherwise a CidrRejection carrying the
    reason. Rules are applied in order: syntax, octet range, prefix range,
    and finally that the address is the canonical network address.
    """
    match = _CIDR_RE.match(cidr.strip()) if isinstance(cidr, str) else None
    if not match:
        return CidrRejection(str(cidr), "expected dotted-quad address followed by /prefix")

    octets = [int(match.group(i)) for i in range(1, 5)]
    if any(o > 255 for o in octets):
        return CidrRejection(cidr, "octet out of range")

    prefix_length = int(match.group(5))
    if prefix_length < MIN_PREFIX or prefix_length > MAX_PREFIX:
        return CidrRejection(cidr, f"prefix must be between /{MIN_PREFIX} and /{MAX_PREFIX}")

    address = ((octets[0] << 24) | (octets[1] << 16) | (octets[2] << 8) | octets[3]) & ALL_ONES
    mask = prefix_mask(prefix_length)
    if address & mask != address:
        return CidrRejection(cidr, "host bits must be zero (use the network address)")

    return CidrNetwork(
        network_address=address,
        prefix_length=prefix_length,
        usable_host_count=usable_host_count(prefix_length),
    )


def require_cidr(cidr: str) -> CidrNetwork:
    """Like parse_cidr but raises InvalidCidrError on rejection."""
    result = parse_cidr(cidr)
    if not result.ok:
        raise InvalidCidrError(result.cidr, result.reason)
    return result


def expand_cidr(network: Union[CidrNetwork, str]) -> List[str]:
    """Every usable host address of the network in ascending order."""
    if isinstance(network, str):
        network = require_cidr(network)

    if network.prefix_length == 32:
        return [int_to_ip(network.network_address)]

    base = network.network_address
    return [
        int_to_ip((base + offset) & ALL_ONES)
        for offset in range(1, network.usable_host_count + 1)
    ]


def contains_host(network: CidrNetwork, address: str) -> bool:
    """True when address is one of the network's usable host addresses."""
    try:
        value = ip_to_int(address)
    except ValueError:
        return False
    if network.prefix_length == 32:
        return value == network.network_address
    offset = value - network.network_address
    return 1 <= offset <= network.usable_host_count


def join_subnet_addresses(addresses: Iterable[str], associations: Iterable[Any]) -> List[SubnetAddress]:
    """Annotate each expanded address with the asset linked to it, if any.

    ``associations`` are objects or dicts exposing ``ip``, ``label`` and
    ``asset``. Output follows the order of ``addresses``.
    """
    lookup = {}
    for assoc in associations:
        if isinstance(assoc, dict):
            lookup[assoc["ip"]] = (assoc.get("asset"), assoc.get("label"))
        else:
            lookup[assoc.ip] = (assoc.asset, assoc.label)

    joined = []
    for ip in addresses:
        asset, label = lookup.get(ip, (None, None))
        joined.append(SubnetAddress(ip=ip, asset=asset, label=label))
    return joined
