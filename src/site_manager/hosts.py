"""Marker-delimited loopback entries in the system hosts file."""

import logging
from typing import Optional, Tuple

from .config import Settings
from .privileged import CommandRunner, Pipeline, Step, write_file

logger = logging.getLogger(__name__)

LOOPBACK = "127.0.0.1"


def markers(domain: str) -> Tuple[str, str]:
    return f"#start site-manager-{domain}", f"#end site-manager-{domain}"


def build_block(domain: str) -> str:
    start, end = markers(domain)
    return f"{start}\n{LOOPBACK} {domain}\n{end}\n"


def remove_block(text: str, domain: str) -> str:
    """Drop every block for domain, plus the blank line that separates it.

    Markers are compared as whole lines. A start marker without a matching
    end marker is removed on its own and the lines after it are kept.
    """
    start, end = markers(domain)
    lines = text.splitlines(keepends=True)
    kept = []
    i = 0
    while i < len(lines):
        if lines[i].strip() != start:
            kept.append(lines[i])
            i += 1
            continue

        j = i + 1
        while j < len(lines) and lines[j].strip() != end:
            j += 1
        if j == len(lines):
            i += 1
            continue

        if kept and not kept[-1].strip():
            kept.pop()
        i = j + 1
    return "".join(kept)


def upsert_block(text: str, domain: str) -> str:
    """Replace any existing block for domain with a fresh one at the end."""
    text = remove_block(text, domain)
    if text and not text.endswith("\n"):
        text += "\n"
    return f"{text}\n{build_block(domain)}"


def has_block(text: str, domain: str) -> bool:
    start, end = markers(domain)
    stripped = [line.strip() for line in text.splitlines()]
    return start in stripped and end in stripped


class HostsFile:
    """Reads the hosts file directly and writes it back through the runner."""

    def __init__(self, settings: Settings, runner: CommandRunner):
        self.path = settings.hosts_file
        self.runner = runner

    def read(self) -> str:
        if not self.path.exists():
            return ""
        return self.path.read_text()

    def has_block(self, domain: str) -> bool:
        return has_block(self.read(), domain)

    def upsert_step(self, domain: str) -> Step:
        return write_file(f"Map {domain} in {self.path}", self.path,
                          upsert_block(self.read(), domain))

    def remove_step(self, domain: str) -> Optional[Step]:
        current = self.read()
        updated = remove_block(current, domain)
        if updated == current:
            return None
        return write_file(f"Unmap {domain} in {self.path}", self.path, updated)

    def upsert(self, domain: str):
        Pipeline(self.runner).strict(self.upsert_step(domain)).run()

    def remove(self, domain: str):
        step = self.remove_step(domain)
        if step is None:
            logger.debug("No hosts block for %s", domain)
            return
        Pipeline(self.runner).strict(step).run()
