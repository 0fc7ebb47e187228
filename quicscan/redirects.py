from __future__ import annotations

import logging
from typing import List, Mapping, Optional, Tuple
from urllib.parse import urljoin, urlsplit

from .connection_parser import domain_in_connections, find_connection, find_connection_fuzzy
from .models import ProxyConnectionRecord, RedirectInfo, RedirectResolution

logger = logging.getLogger(__name__)

UNRESOLVED = "-"


class RedirectResolver:
    """Reconciles redirect and IP signals into one (domain, ip) pair per hop.

    Signals are trusted in this order: addresses the debugging session saw on
    the wire, then the proxy's connection list, then header/URL heuristics.
    A candidate redirect target is only accepted when the proxy actually
    connected to it (whenever a connection list is available), which keeps
    challenge and interstitial hosts from being reported as the redirect.
    """

    def __init__(
        self,
        target: str,
        domain_to_ip: Optional[Mapping[str, str]] = None,
        connections: Optional[List[ProxyConnectionRecord]] = None,
    ) -> None:
        self._target = target
        self._domain_to_ip = dict(domain_to_ip or {})
        self._connections = connections

    @property
    def connections_available(self) -> bool:
        return self._connections is not None

    def resolve_ip(self, domain: str) -> str:
        ip = self._domain_to_ip.get(domain)
        if ip:
            logger.debug("[IP] %s -> %s (debugging session)", domain, ip)
            return ip
        if self._connections:
            record = find_connection(self._connections, domain)
            if record is None:
                record = find_connection_fuzzy(self._connections, domain)
            if record is not None and record.ip:
                logger.debug("[IP] %s -> %s (proxy record %s)", domain, record.ip, record.domain)
                return record.ip
        return UNRESOLVED

    def _accept(self, candidate: str) -> bool:
        if self._connections is None:
            return True
        accepted = domain_in_connections(self._connections, candidate)
        logger.debug("[REDIRECT-VALIDATION] %s in proxy connections: %s", candidate, accepted)
        return accepted

    def location_domain(self, location: str) -> Optional[str]:
        absolute = urljoin(f"https://{self._target}/", location.strip())
        try:
            return urlsplit(absolute).hostname
        except ValueError:
            return None

    def _from_location(self, info: Optional[RedirectInfo]) -> Optional[str]:
        if info is None or not info.location_header:
            return None
        domain = self.location_domain(info.location_header)
        if not domain or domain == self._target:
            return None
        if not self._accept(domain):
            logger.info("[LOCATION-REJECTED] %s not among proxy connections, ignoring", domain)
            return None
        logger.info("[LOCATION-HEADER] %s -> %s (HTTP %s)", self._target, domain, info.redirect_status)
        return domain

    def _from_final_url(self, final_url: Optional[str]) -> Optional[str]:
        if not final_url:
            return None
        try:
            domain = urlsplit(final_url).hostname
        except ValueError:
            return None
        if not domain or domain == self._target:
            return None
        if not self._accept(domain):
            logger.info("[RESPONSE-REJECTED] %s not among proxy connections, ignoring", domain)
            return None
        logger.info("[RESPONSE-URL] %s -> %s", self._target, domain)
        return domain

    def resolve(self, info: Optional[RedirectInfo], final_url: Optional[str]) -> RedirectResolution:
        """Resolve origin IP and redirect target, consuming (clearing) `info`."""
        candidate, source = self._pick(info, final_url)
        original_ip = self.resolve_ip(self._target)
        if candidate is None:
            resolution = RedirectResolution(
                original_ip=original_ip,
                redirected_domain=UNRESOLVED,
                redirected_ip=UNRESOLVED,
                redirect_detected=False,
            )
        else:
            resolution = RedirectResolution(
                original_ip=original_ip,
                redirected_domain=candidate,
                redirected_ip=self.resolve_ip(candidate),
                redirect_detected=True,
                source=source,
            )
        if info is not None:
            info.clear()
        return resolution

    def _pick(self, info: Optional[RedirectInfo], final_url: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
        domain = self._from_location(info)
        if domain is not None:
            return domain, "location"
        domain = self._from_final_url(final_url)
        if domain is not None:
            return domain, "final_url"
        return None, None
