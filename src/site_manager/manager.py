"""Site provisioning: ties the CA, certificates, nginx and hosts together.

Every operation runs synchronously and is expected to be the only one in
flight; nothing here locks the registry or the hosts file.
"""

import dataclasses
import logging
from pathlib import Path
from typing import Dict, List, Optional

from . import probe
from .ca import CertificateAuthority
from .config import Settings, load_settings
from .errors import MissingDependenciesError, SiteExistsError
from .hosts import HostsFile
from .privileged import CommandRunner, Pipeline, Step, write_file
from .probe import Capabilities
from .registry import PHP, PROXY, SiteRecord, SiteRegistry, make_site, validate_domain
from .ssl import issue_certificate
from .vhost import activate_site_config, activation_steps, reload_steps, removal_steps

logger = logging.getLogger(__name__)

PLACEHOLDER_INDEX = "<?php phpinfo(); ?>\n"


class SiteManager:
    """Caller-facing operations for managed local HTTPS sites."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        runner: Optional[CommandRunner] = None,
        registry: Optional[SiteRegistry] = None,
    ):
        self.settings = settings or load_settings()
        self.runner = runner or CommandRunner(self.settings.elevate_with)
        self.registry = registry or SiteRegistry(self.settings.registry_file)
        self.ca = CertificateAuthority(self.settings, self.runner)
        self.hosts = HostsFile(self.settings, self.runner)

    # -- system --------------------------------------------------------

    def check_dependencies(self) -> Dict[str, bool]:
        return probe.check_dependencies()

    def install_dependencies(self) -> str:
        return probe.install_dependencies(self.runner)

    def list_php_versions(self) -> List[str]:
        return probe.list_php_versions(self.settings)

    def list_sites(self) -> List[SiteRecord]:
        return self.registry.list()

    def require_dependencies(self):
        """Raise MissingDependenciesError unless every binary is installed."""
        missing = [name for name, present in self.check_dependencies().items() if not present]
        if missing:
            raise MissingDependenciesError(missing)

    def overview(self) -> Dict:
        """Dependency status, plus sites and PHP versions once all are present."""
        dependencies = self.check_dependencies()
        ready = all(dependencies.values())
        overview = {
            "dependencies": dependencies,
            "ready": ready,
            "sites": [],
            "php_versions": [],
        }
        if ready:
            overview["sites"] = [site.to_dict() for site in self.list_sites()]
            overview["php_versions"] = self.list_php_versions()
        return overview

    # -- sites ---------------------------------------------------------

    def _site_directory_steps(self, site: SiteRecord) -> List[Step]:
        root = self.settings.site_root(site.domain)
        public = self.settings.public_dir(site.domain)
        steps = [Step(f"Create {public}", ("mkdir", "-p", public))]
        index = public / "index.php"
        if site.kind == PHP and not index.exists():
            steps.append(write_file("Write placeholder index.php", index, PLACEHOLDER_INDEX))
        steps.append(Step(f"Give {root} to {self.settings.site_owner}",
                          ("chown", "-R", f"{self.settings.site_owner}:", root)))
        return steps

    def _issue(self, domain: str, capabilities: Capabilities):
        ca_key, ca_cert = self.ca.ensure(capabilities)
        return issue_certificate(self.settings, self.runner, domain, ca_key, ca_cert)

    def create_site(self, domain: str, kind: str, php_version=None, proxy_port=None) -> SiteRecord:
        """Provision a new site and register it once every step succeeded."""
        site = make_site(domain, kind, php_version=php_version, proxy_port=proxy_port)
        if site.domain in self.registry:
            raise SiteExistsError(site.domain)

        logger.info("Creating %s site %s", site.kind, site.domain)
        capabilities = probe.probe_capabilities(self.settings)
        self._issue(site.domain, capabilities)

        pipeline = Pipeline(self.runner)
        pipeline.strict(*self._site_directory_steps(site))
        pipeline.extend(activation_steps(self.settings, site, capabilities))
        pipeline.strict(self.hosts.upsert_step(site.domain))
        pipeline.run()

        self.registry.add(site)
        return site

    def update_site(self, domain: str, php_version=None, proxy_port=None) -> SiteRecord:
        """Change the PHP version or proxy port and reload the server block.

        Only the field matching the site's kind is applied. The certificate
        and hosts entry are left as they are.
        """
        site = self.registry.require(domain)

        if site.kind == PHP and php_version:
            site = dataclasses.replace(site, php_version=php_version)
        elif site.kind == PROXY and proxy_port is not None:
            site = dataclasses.replace(site, proxy_port=proxy_port)
        else:
            logger.debug("No applicable change for %s site %s", site.kind, site.domain)

        capabilities = probe.probe_capabilities(self.settings)
        activate_site_config(self.settings, self.runner, site, capabilities)

        self.registry.put(site)
        return site

    def _site_dir_is_safe(self, domain: str) -> bool:
        path = self.settings.site_root(domain)
        resolved = path.resolve()
        root = self.settings.web_root.resolve()
        return resolved.parent == root and resolved.name == domain

    def delete_site(self, domain: str):
        """Tear down everything belonging to domain, then unregister it.

        Removal steps are best-effort since the site may already be partly
        gone. The nginx test/reload at the end still raises on failure, and
        the registry entry is dropped either way.
        """
        domain = validate_domain(domain)
        logger.info("Deleting site %s", domain)
        capabilities = probe.probe_capabilities(self.settings)

        pipeline = Pipeline(self.runner)
        pipeline.best_effort(*removal_steps(self.settings, domain, capabilities))
        pipeline.best_effort(
            Step(f"Remove certificate for {domain}", ("rm", "-f", self.settings.site_cert(domain))),
            Step(f"Remove key for {domain}", ("rm", "-f", self.settings.site_key(domain))),
        )
        if self._site_dir_is_safe(domain):
            pipeline.best_effort(Step(f"Remove {self.settings.site_root(domain)}",
                                      ("rm", "-rf", self.settings.site_root(domain))))
        else:
            logger.warning("Refusing to remove %s", self.settings.site_root(domain))

        hosts_step = self.hosts.remove_step(domain)
        if hosts_step is not None:
            pipeline.best_effort(hosts_step)
        pipeline.strict(*reload_steps(self.settings))

        try:
            pipeline.run()
        finally:
            self.registry.delete(domain)

    # -- certificates --------------------------------------------------

    def regenerate_site_cert(self, domain: str) -> Path:
        """Re-issue the leaf certificate of a registered site and reload nginx."""
        site = self.registry.require(domain)
        capabilities = probe.probe_capabilities(self.settings)
        _, cert_path = self._issue(site.domain, capabilities)
        Pipeline(self.runner).extend(reload_steps(self.settings)).run()
        return cert_path

    def regenerate_ca(self) -> List[str]:
        """Replace the root CA and re-issue every site certificate under it.

        Returns the domains that were re-issued, in registry order.
        """
        capabilities = probe.probe_capabilities(self.settings)
        ca_key, ca_cert = self.ca.regenerate(capabilities)

        domains = []
        for site in self.registry.list():
            issue_certificate(self.settings, self.runner, site.domain, ca_key, ca_cert)
            domains.append(site.domain)

        if domains:
            Pipeline(self.runner).extend(reload_steps(self.settings)).run()
        logger.info("Regenerated CA and %d site certificate(s)", len(domains))
        return domains
