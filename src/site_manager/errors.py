"""Exceptions raised by site-manager operations.

Messages are meant to be shown to the user as-is.
"""

from typing import Optional, Sequence


class SiteManagerError(Exception):
    """Base class for every error surfaced to callers."""


class ValidationError(SiteManagerError):
    """Invalid domain, PHP version, port or site kind."""


class SiteExistsError(SiteManagerError):
    def __init__(self, domain: str):
        super().__init__(f"Site {domain} already exists")
        self.domain = domain


class SiteNotFoundError(SiteManagerError):
    def __init__(self, domain: str):
        super().__init__(f"Site {domain} not found")
        self.domain = domain


class CommandError(SiteManagerError):
    """A privileged step exited non-zero or could not be started."""

    def __init__(
        self,
        description: str,
        argv: Sequence[str] = (),
        returncode: Optional[int] = None,
        output: str = "",
    ):
        self.description = description
        self.argv = list(argv)
        self.returncode = returncode
        self.output = output.strip()

        message = f"{description} failed"
        if returncode is not None:
            message += f" (exit {returncode})"
        if self.output:
            message += f": {self.output}"
        super().__init__(message)


class MissingDependenciesError(SiteManagerError):
    def __init__(self, missing: Sequence[str]):
        super().__init__(
            f"Missing dependencies: {', '.join(missing)}. Run 'site-manager install-deps' first."
        )
        self.missing = list(missing)
