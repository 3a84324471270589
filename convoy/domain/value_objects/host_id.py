"""
HostId Value Object

Architectural Intent:
- Immutable identifier for one deployment target in the fleet
- Carries the address plus a reference to the credentials used to reach it
- Validates hostname format (DNS, IPv4, IPv6), port bounds, non-empty user
- Supports IPv6 bracket notation in parse() (e.g., deploy@[::1]:2222)
"""

import re
from dataclasses import dataclass
from typing import Optional

# RFC 1123 hostname: labels of alnum/hyphens, dot-separated
_HOSTNAME_RE = re.compile(
    r"^(?!-)[A-Za-z0-9-]{1,63}(?<!-)(\.[A-Za-z0-9-]{1,63})*$"
)

_IPV4_RE = re.compile(
    r"^(\d{1,3})\.(\d{1,3})\.(\d{1,3})\.(\d{1,3})$"
)

# Simplified: accepts ::1, fe80::1 and friends
_IPV6_RE = re.compile(r"^[0-9a-fA-F:]+$")


def _is_valid_hostname(host: str) -> bool:
    if not host:
        return False

    m = _IPV4_RE.match(host)
    if m:
        return all(0 <= int(g) <= 255 for g in m.groups())

    if _IPV6_RE.match(host) and ":" in host:
        return True

    return bool(_HOSTNAME_RE.match(host)) and len(host) <= 253


@dataclass(frozen=True)
class HostId:
    """
    Value Object identifying a target host.

    Two HostIds are the same host when address, user, port and credentials
    reference all match.
    """
    host: str
    user: str = "root"
    port: int = 22
    credentials_ref: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.user:
            raise ValueError("Host user cannot be empty")
        if not (1 <= self.port <= 65535):
            raise ValueError(f"Port must be 1-65535, got {self.port}")
        if not _is_valid_hostname(self.host):
            raise ValueError(f"Invalid hostname: {self.host!r}")

    def __str__(self) -> str:
        if ":" in self.host:
            return f"{self.user}@[{self.host}]:{self.port}"
        return f"{self.user}@{self.host}:{self.port}"

    @staticmethod
    def parse(
        connection_string: str, credentials_ref: Optional[str] = None
    ) -> "HostId":
        """
        Parses 'user@host:port', 'host' or 'user@[::1]:port' into a HostId.
        """
        user = "root"
        port = 22
        host = connection_string.strip()

        if "@" in host:
            user, host = host.split("@", 1)

        if host.startswith("["):
            bracket_end = host.find("]")
            if bracket_end == -1:
                raise ValueError(f"Unterminated IPv6 bracket in: {connection_string}")
            ipv6_addr = host[1:bracket_end]
            remainder = host[bracket_end + 1:]
            if remainder.startswith(":"):
                port = int(remainder[1:])
            host = ipv6_addr
        elif host.count(":") == 1:
            name, _, raw_port = host.partition(":")
            try:
                port = int(raw_port)
                host = name
            except ValueError:
                pass

        return HostId(host=host, user=user, port=port, credentials_ref=credentials_ref)
