"""site-manager - Trusted local HTTPS development sites for nginx."""

__version__ = "0.1.0"

from .errors import (
    SiteManagerError,
    ValidationError,
    SiteExistsError,
    SiteNotFoundError,
    CommandError,
    MissingDependenciesError,
)
from .config import Settings, load_settings
from .registry import PhpSite, ProxySite, SiteRegistry
from .manager import SiteManager

__all__ = [
    "SiteManager",
    "SiteRegistry",
    "PhpSite",
    "ProxySite",
    "Settings",
    "load_settings",
    "SiteManagerError",
    "ValidationError",
    "SiteExistsError",
    "SiteNotFoundError",
    "CommandError",
    "MissingDependenciesError",
]
