"""Service discovery: turn a configured address into an HTTP base URL.

Accepted forms:
  http://host:port / https://...   used as-is (trailing slash stripped)
  name.service.consul              SRV lookup, then A lookup of the SRV target
  anything else                    treated as a bare host[:port]

Used for both the wiki and the embedding backend.
"""

from __future__ import annotations

import dns.exception
import dns.resolver

from tiddlyvec.errors import DnsResolutionError

DNS_TIMEOUT = 10.0  # seconds, per lookup

_SERVICE_MARKER = ".service.consul"


def resolve_base_url(url_or_service: str, timeout: float = DNS_TIMEOUT) -> str:
    """Return an ``http(s)://host:port`` base URL without trailing slash.

    Raises:
        DnsResolutionError: If a service name has no usable SRV record or the
            SRV lookup times out.
    """
    if url_or_service.startswith(("http://", "https://")):
        return url_or_service.rstrip("/")

    if _SERVICE_MARKER in url_or_service:
        host, port = resolve_service(url_or_service, timeout=timeout)
        return f"http://{host}:{port}"

    return f"http://{url_or_service}"


def resolve_service(name: str, timeout: float = DNS_TIMEOUT) -> tuple[str, int]:
    """Resolve a Consul-style service name to ``(host, port)``.

    The SRV record with the lowest priority (highest weight on ties) wins. Its
    target is resolved to an IPv4 address; if that lookup fails the target
    hostname is returned instead.
    """
    try:
        resolver = _make_resolver(timeout)
        answer = resolver.resolve(name, "SRV")
    except dns.exception.Timeout as exc:
        raise DnsResolutionError(
            f"DNS SRV resolution timed out for {name} after {timeout:g}s"
        ) from exc
    except dns.exception.DNSException as exc:
        raise DnsResolutionError(f"No SRV records found for {name}: {exc}") from exc

    records = sorted(answer, key=lambda r: (r.priority, -r.weight))
    if not records:
        raise DnsResolutionError(f"No SRV records found for {name}")

    srv = records[0]
    target = srv.target.to_text(omit_final_dot=True)
    host = target
    try:
        addresses = resolver.resolve(target, "A")
        for rr in addresses:
            host = rr.to_text()
            break
    except dns.exception.DNSException:
        pass  # fall back to the SRV target hostname
    return host, int(srv.port)


def _make_resolver(timeout: float) -> dns.resolver.Resolver:
    resolver = dns.resolver.Resolver()
    resolver.lifetime = timeout
    resolver.timeout = timeout
    return resolver
