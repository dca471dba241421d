"""System dependency detection and host capability probing."""

import logging
import re
import shutil
from dataclasses import dataclass
from typing import Dict, List, Optional

from .config import Settings
from .privileged import CommandRunner, Pipeline, Step

logger = logging.getLogger(__name__)

REQUIRED_BINARIES = ("nginx", "php", "openssl", "certutil")

# Debian/Ubuntu package set
INSTALL_PACKAGES = ("nginx", "php-fpm", "libnss3-tools", "openssl")

_PHP_BINARY = re.compile(r"^php(\d+\.\d+)$")


@dataclass(frozen=True)
class Capabilities:
    """Host layout facts, probed once per operation."""
    fastcgi_snippet: bool
    sites_available: bool
    trust_store: Optional[str]  # "debian", "redhat" or None


def check_dependencies() -> Dict[str, bool]:
    """Report whether each required binary is on PATH."""
    return {name: shutil.which(name) is not None for name in REQUIRED_BINARIES}


def list_php_versions(settings: Settings) -> List[str]:
    """Installed PHP versions, parsed from php<major>.<minor> binaries."""
    if not settings.php_bin_dir.is_dir():
        return []

    versions = set()
    for entry in settings.php_bin_dir.iterdir():
        match = _PHP_BINARY.match(entry.name)
        if match:
            versions.add(match.group(1))

    return sorted(versions, key=lambda v: tuple(int(part) for part in v.split(".")))


def install_dependencies(runner: CommandRunner) -> str:
    """Install nginx, PHP-FPM, NSS tools and openssl with apt-get."""
    results = Pipeline(runner).strict(
        Step("Refresh package index", ("apt-get", "update")),
        Step("Install packages", ("apt-get", "install", "-y", *INSTALL_PACKAGES)),
    ).run()
    return "".join(r.output for r in results)


def probe_capabilities(settings: Settings) -> Capabilities:
    if settings.system_ca_dir.is_dir():
        trust_store = "debian"
    elif settings.redhat_ca_dir.is_dir():
        trust_store = "redhat"
    else:
        trust_store = None

    capabilities = Capabilities(
        fastcgi_snippet=(settings.nginx_dir / "snippets" / "fastcgi-php.conf").exists(),
        sites_available=(settings.nginx_dir / "sites-available").is_dir(),
        trust_store=trust_store,
    )
    logger.debug("Probed capabilities: %s", capabilities)
    return capabilities
