"""Site registry for site-manager."""

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Union

import yaml

from .errors import SiteExistsError, SiteNotFoundError, ValidationError

PHP = "php"
PROXY = "proxy"
KINDS = (PHP, PROXY)

_LABEL = re.compile(r"^[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?$")
_PHP_VERSION = re.compile(r"^\d+\.\d+$")


def validate_domain(domain: str) -> str:
    """Normalise a domain and check it against a strict hostname grammar."""
    if not isinstance(domain, str):
        raise ValidationError("Domain must be a string")
    domain = domain.strip().lower()
    if not domain or len(domain) > 253:
        raise ValidationError(f"Invalid domain: {domain!r}")
    labels = domain.split(".")
    if len(labels) < 2 or not all(_LABEL.match(label) for label in labels):
        raise ValidationError(f"Invalid domain: {domain!r}")
    return domain


def validate_php_version(version) -> str:
    version = str(version).strip()
    if not _PHP_VERSION.match(version):
        raise ValidationError(f"Invalid PHP version: {version!r}")
    return version


def validate_port(port) -> int:
    try:
        value = int(port)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid proxy port: {port!r}") from None
    if isinstance(port, bool) or str(value) != str(port).strip() or not 1 <= value <= 65535:
        raise ValidationError(f"Invalid proxy port: {port!r}")
    return value


@dataclass(frozen=True)
class PhpSite:
    domain: str
    php_version: str
    kind = PHP

    def __post_init__(self):
        object.__setattr__(self, "domain", validate_domain(self.domain))
        object.__setattr__(self, "php_version", validate_php_version(self.php_version))

    def to_dict(self) -> Dict:
        return {"domain": self.domain, "type": PHP, "php_version": self.php_version}


@dataclass(frozen=True)
class ProxySite:
    domain: str
    proxy_port: int
    kind = PROXY

    def __post_init__(self):
        object.__setattr__(self, "domain", validate_domain(self.domain))
        object.__setattr__(self, "proxy_port", validate_port(self.proxy_port))

    def to_dict(self) -> Dict:
        return {"domain": self.domain, "type": PROXY, "proxy_port": self.proxy_port}


SiteRecord = Union[PhpSite, ProxySite]


def make_site(domain: str, kind: str, php_version=None, proxy_port=None) -> SiteRecord:
    """Build a record, requiring exactly the field that matches kind."""
    if kind == PHP:
        if proxy_port is not None:
            raise ValidationError("PHP sites do not take a proxy port")
        if not php_version:
            raise ValidationError("PHP sites require a PHP version")
        return PhpSite(domain, php_version)
    if kind == PROXY:
        if php_version is not None:
            raise ValidationError("Proxy sites do not take a PHP version")
        if proxy_port is None:
            raise ValidationError("Proxy sites require a proxy port")
        return ProxySite(domain, proxy_port)
    raise ValidationError(f"Unknown site type: {kind!r} (expected one of {', '.join(KINDS)})")


def site_from_dict(data: Dict) -> SiteRecord:
    kind = data.get("type")
    if kind == PHP:
        return PhpSite(data.get("domain"), data.get("php_version"))
    if kind == PROXY:
        return ProxySite(data.get("domain"), data.get("proxy_port"))
    raise ValidationError(f"Unknown site type in registry: {kind!r}")


class SiteRegistry:
    """Persisted, ordered collection of site records keyed by domain.

    Records are immutable, so everything handed out is safe to keep.
    """

    def __init__(self, registry_file: Path):
        self.registry_file = registry_file
        self._sites: List[SiteRecord] = []
        self.load()

    def load(self):
        """Load sites from file."""
        self._sites = []
        if self.registry_file.exists():
            with open(self.registry_file) as f:
                data = yaml.safe_load(f) or {}
            self._sites = [site_from_dict(entry) for entry in data.get("sites") or []]

    def save(self):
        """Save sites to file."""
        self.registry_file.parent.mkdir(parents=True, exist_ok=True)
        with open(self.registry_file, "w") as f:
            yaml.safe_dump(
                {"sites": [site.to_dict() for site in self._sites]},
                f,
                default_flow_style=False,
                sort_keys=False,
            )

    def list(self) -> List[SiteRecord]:
        return list(self._sites)

    def get(self, domain: str) -> Optional[SiteRecord]:
        domain = validate_domain(domain)
        for site in self._sites:
            if site.domain == domain:
                return site
        return None

    def require(self, domain: str) -> SiteRecord:
        site = self.get(domain)
        if site is None:
            raise SiteNotFoundError(validate_domain(domain))
        return site

    def __contains__(self, domain: str) -> bool:
        return self.get(domain) is not None

    def add(self, site: SiteRecord):
        """Append a new record; the domain must not be registered yet."""
        if site.domain in self:
            raise SiteExistsError(site.domain)
        self._sites.append(site)
        self.save()

    def put(self, site: SiteRecord):
        """Insert or replace a record, keeping its position in the registry."""
        for index, existing in enumerate(self._sites):
            if existing.domain == site.domain:
                self._sites[index] = site
                break
        else:
            self._sites.append(site)
        self.save()

    def delete(self, domain: str) -> bool:
        domain = validate_domain(domain)
        remaining = [site for site in self._sites if site.domain != domain]
        removed = len(remaining) != len(self._sites)
        self._sites = remaining
        self.save()
        return removed
