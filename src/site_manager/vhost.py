"""nginx virtual host generation and activation."""

import logging
import shlex
from pathlib import Path
from typing import List, Optional

from .config import Settings, get_jinja_env
from .privileged import CommandRunner, Pipeline, Step, write_file
from .probe import Capabilities
from .registry import PHP, SiteRecord

logger = logging.getLogger(__name__)


def render_site_config(settings: Settings, site: SiteRecord, capabilities: Capabilities) -> str:
    """Render the server block for a PHP-FPM or reverse-proxy site."""
    env = get_jinja_env()
    context = {
        "domain": site.domain,
        "cert_path": settings.site_cert(site.domain),
        "key_path": settings.site_key(site.domain),
    }

    if site.kind == PHP:
        template = env.get_template("php-site.conf.j2")
        context.update(
            public_dir=settings.public_dir(site.domain),
            fastcgi_snippet=capabilities.fastcgi_snippet,
            php_socket=settings.php_socket(site.php_version),
        )
    else:
        template = env.get_template("proxy-site.conf.j2")
        context.update(proxy_port=site.proxy_port)

    return template.render(**context)


def config_path(settings: Settings, domain: str, capabilities: Capabilities) -> Path:
    if capabilities.sites_available:
        return settings.nginx_dir / "sites-available" / domain
    return settings.nginx_dir / "conf.d" / f"{domain}.conf"


def enabled_link(settings: Settings, domain: str, capabilities: Capabilities) -> Optional[Path]:
    if capabilities.sites_available:
        return settings.nginx_dir / "sites-enabled" / domain
    return None


def reload_steps(settings: Settings) -> List[Step]:
    """Validate the configuration, then reload nginx."""
    return [
        Step("Test nginx configuration", ("nginx", "-t")),
        Step("Reload nginx", shlex.split(settings.reload_command)),
    ]


def activation_steps(settings: Settings, site: SiteRecord, capabilities: Capabilities) -> List[Step]:
    path = config_path(settings, site.domain, capabilities)
    steps = [
        write_file(f"Write nginx config for {site.domain}", path,
                   render_site_config(settings, site, capabilities)),
    ]

    link = enabled_link(settings, site.domain, capabilities)
    if link is not None:
        steps.append(Step(f"Enable {site.domain}", ("ln", "-sf", path, link)))

    return steps + reload_steps(settings)


def activate_site_config(
    settings: Settings,
    runner: CommandRunner,
    site: SiteRecord,
    capabilities: Capabilities,
):
    """Write, enable and load the site's server block.

    nginx is only reloaded once `nginx -t` has accepted the new file.
    """
    logger.info("Activating nginx config for %s", site.domain)
    Pipeline(runner).extend(activation_steps(settings, site, capabilities)).run()


def removal_steps(settings: Settings, domain: str, capabilities: Capabilities) -> List[Step]:
    steps = [Step(f"Remove nginx config for {domain}",
                  ("rm", "-f", config_path(settings, domain, capabilities)))]
    link = enabled_link(settings, domain, capabilities)
    if link is not None:
        steps.append(Step(f"Disable {domain}", ("rm", "-f", link)))
    return steps
