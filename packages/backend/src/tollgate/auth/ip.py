"""IP allow-list matching for API keys.

Entries are single addresses or CIDR ranges, IPv4 or IPv6. Clients that
arrive as IPv4-mapped IPv6 (``::ffff:10.0.0.1``) are compared as IPv4.
An empty allow-list means "no restriction"; an unparseable client
address never matches a non-empty list.
"""

import ipaddress
from typing import Iterable, Optional, Union

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


def parse_ip(value: str) -> Optional[IPAddress]:
    try:
        ip = ipaddress.ip_address(value.strip())
    except ValueError:
        return None
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        return ip.ipv4_mapped
    return ip


def validate_entry(entry: str) -> str:
    """Normalise one allow-list entry, raising ValueError when invalid."""
    entry = entry.strip()
    if "/" in entry:
        return str(ipaddress.ip_network(entry, strict=False))
    ip = parse_ip(entry)
    if ip is None:
        raise ValueError(f"Invalid IP address or CIDR range: {entry!r}")
    return str(ip)


def is_ip_allowed(client_ip: Optional[str], allowed: Iterable[str]) -> bool:
    allowed = list(allowed)
    if not allowed:
        return True
    ip = parse_ip(client_ip) if client_ip else None
    if ip is None:
        return False

    for entry in allowed:
        if "/" in entry:
            try:
                network = ipaddress.ip_network(entry, strict=False)
            except ValueError:
                continue
            if ip.version == network.version and ip in network:
                return True
        elif parse_ip(entry) == ip:
            return True
    return False
