"""Configuration management for site-manager."""

import dataclasses
import getpass
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml
from jinja2 import Environment, PackageLoader, select_autoescape

from .errors import ValidationError


def default_app_dir() -> Path:
    """Application-private directory holding CA material and the registry."""
    if os.environ.get("SITE_MANAGER_HOME"):
        return Path(os.environ["SITE_MANAGER_HOME"])
    config_home = os.environ.get("XDG_CONFIG_HOME") or str(invoking_home() / ".config")
    return Path(config_home) / "site-manager"


def invoking_user() -> str:
    """Name of the user who ran the tool, looking through sudo."""
    return os.environ.get("SUDO_USER") or getpass.getuser()


def invoking_home() -> Path:
    sudo_user = os.environ.get("SUDO_USER")
    if sudo_user:
        return Path(os.path.expanduser(f"~{sudo_user}"))
    return Path.home()


@dataclass
class Settings:
    """Filesystem layout and host integration settings."""
    app_dir: Path = field(default_factory=default_app_dir)
    web_root: Path = Path("/var/www")
    ssl_cert_dir: Path = Path("/etc/ssl/certs")
    ssl_key_dir: Path = Path("/etc/ssl/private")
    nginx_dir: Path = Path("/etc/nginx")
    hosts_file: Path = Path("/etc/hosts")
    php_bin_dir: Path = Path("/usr/bin")
    php_fpm_socket: str = "/run/php/php{version}-fpm.sock"
    system_ca_dir: Path = Path("/usr/local/share/ca-certificates")
    redhat_ca_dir: Path = Path("/etc/pki/ca-trust/source/anchors")
    ca_name: str = "SiteManager Local CA"
    elevate_with: str = "sudo"
    reload_command: str = "systemctl reload nginx"
    user_home: Path = field(default_factory=invoking_home)
    site_owner: str = field(default_factory=invoking_user)
    api_host: str = "127.0.0.1"
    api_port: int = 8765

    @property
    def ca_dir(self) -> Path:
        return self.app_dir / "ssl"

    @property
    def ca_key(self) -> Path:
        return self.ca_dir / "rootCA.key"

    @property
    def ca_cert(self) -> Path:
        return self.ca_dir / "rootCA.pem"

    @property
    def config_file(self) -> Path:
        return self.app_dir / "config.yaml"

    @property
    def registry_file(self) -> Path:
        return self.app_dir / "sites.yaml"

    def site_root(self, domain: str) -> Path:
        return self.web_root / domain

    def public_dir(self, domain: str) -> Path:
        # Laravel-style public/ document root
        return self.site_root(domain) / "public"

    def site_cert(self, domain: str) -> Path:
        return self.ssl_cert_dir / f"{domain}.crt"

    def site_key(self, domain: str) -> Path:
        return self.ssl_key_dir / f"{domain}.key"

    def php_socket(self, version: str) -> str:
        return self.php_fpm_socket.format(version=version)


_PATH_FIELDS = {f.name for f in dataclasses.fields(Settings) if f.type is Path}


def load_settings(path: Optional[Path] = None) -> Settings:
    """Build settings from defaults, overridden by config.yaml if present.

    Without an explicit path the file is looked up inside the app directory.
    """
    settings = Settings()
    config_file = Path(path) if path else settings.config_file
    if not config_file.exists():
        return settings

    with open(config_file) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValidationError(f"{config_file} must contain a mapping")

    known = {f.name for f in dataclasses.fields(Settings)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValidationError(f"Unknown settings in {config_file}: {', '.join(unknown)}")

    overrides = {
        key: Path(os.path.expanduser(str(value))) if key in _PATH_FIELDS else value
        for key, value in data.items()
    }
    return dataclasses.replace(settings, **overrides)


def get_jinja_env():
    """Get Jinja2 environment for templates."""
    return Environment(
        loader=PackageLoader("site_manager", "templates"),
        autoescape=select_autoescape(["html", "xml"]),
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
    )
