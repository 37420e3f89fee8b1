import ipaddress
import re
from dataclasses import dataclass
from typing import Iterable, List, Mapping, Optional, Tuple, Union

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]

FORWARDING_HEADERS = ("X-Forwarded-For", "X-Real-IP")

RESERVED_IP_BLOCKS: Tuple[IPNetwork, ...] = tuple(
    ipaddress.ip_network(cidr)
    for cidr in (
        "127.0.0.0/8",  # IPv4 loopback
        "10.0.0.0/8",  # RFC1918
        "172.16.0.0/12",  # RFC1918
        "192.168.0.0/16",  # RFC1918
        "169.254.0.0/16",  # RFC3927 link-local
        "::1/128",  # IPv6 loopback
        "fe80::/10",  # IPv6 link-local
        "fc00::/7",  # IPv6 unique local
    )
)

IPV4_LINK_LOCAL_MULTICAST = ipaddress.ip_network("224.0.0.0/24")


class ConfigurationError(ValueError):
    """Raised when a middleware instance cannot be built from its configuration."""


class IPParseError(ValueError):
    def __init__(self, token: str):
        super().__init__(f"unable to parse IP from address [{token}]")
        self.token = token


@dataclass(frozen=True)
class MatchResult:
    rule_kind: str  # "exact_match" or "regex"
    rule_value: str


@dataclass(frozen=True)
class RuleSet:
    exact_match: Tuple[str, ...] = ()
    regexps: Tuple[re.Pattern, ...] = ()

    def __bool__(self) -> bool:
        return bool(self.exact_match or self.regexps)


def compile_rules(regex: Iterable[str] = (), exact_match: Iterable[str] = ()) -> RuleSet:
    """
    Compile every pattern up front. A single bad pattern fails the whole set.
    """
    compiled = []
    for pattern in regex:
        try:
            compiled.append(re.compile(pattern))
        except re.error as e:
            raise ConfigurationError(f"error compiling regex {pattern!r}: {e}") from e
    return RuleSet(exact_match=tuple(exact_match), regexps=tuple(compiled))


def compose_url(host: str, path: str, query: str = "") -> str:
    if query:
        return f"{host}{path}?{query}"
    return f"{host}{path}"


def evaluate(rules: RuleSet, full_url: str) -> Optional[MatchResult]:
    """
    Exact-match rules (substring containment) are checked before regexes.
    Regexes use search semantics, so only explicit ^/$ anchor them.
    """
    for value in rules.exact_match:
        if value in full_url:
            return MatchResult("exact_match", value)

    for regex in rules.regexps:
        if regex.search(full_url):
            return MatchResult("regex", regex.pattern)

    return None


def parse_ip(token: str) -> IPAddress:
    try:
        ip = ipaddress.ip_address(token.strip())
    except ValueError:
        raise IPParseError(token) from None

    # ::ffff:a.b.c.d is classified as the IPv4 address it wraps
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped:
        return ip.ipv4_mapped
    return ip


def extract_forwarded_ips(headers: Mapping[str, str]) -> List[IPAddress]:
    """
    Collect the addresses claimed by X-Forwarded-For and then X-Real-IP.

    Each header value is split on commas; empty tokens are skipped. Raises
    IPParseError on the first token that is not an address.
    """
    ips = []
    for name in FORWARDING_HEADERS:
        value = headers.get(name) or ""
        for token in value.split(","):
            if not token.strip():
                continue
            ips.append(parse_ip(token))
    return ips


def _is_link_local_multicast(ip: IPAddress) -> bool:
    if isinstance(ip, ipaddress.IPv4Address):
        return ip in IPV4_LINK_LOCAL_MULTICAST
    # ffX2::/16, scope nibble 2 is link-local
    return ip.is_multicast and (ip.packed[1] & 0x0F) == 0x02


def is_private_ip(ip: IPAddress, blocks: Iterable[IPNetwork] = RESERVED_IP_BLOCKS) -> bool:
    if ip.is_loopback or ip.is_link_local or _is_link_local_multicast(ip):
        return True
    return any(ip.version == block.version and ip in block for block in blocks)


def all_private(ips: Iterable[IPAddress], blocks: Iterable[IPNetwork] = RESERVED_IP_BLOCKS) -> bool:
    """True when every address is private. An empty sequence counts as private."""
    blocks = tuple(blocks)
    return all(is_private_ip(ip, blocks) for ip in ips)
