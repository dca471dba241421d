import shutil
import subprocess
from pathlib import Path

import pytest

from site_manager.config import Settings
from site_manager.errors import CommandError
from site_manager.manager import SiteManager
from site_manager.privileged import CommandRunner
from site_manager.registry import SiteRegistry


class FakeRunner:
    """Records steps and applies file-level effects inside the test tree.

    openssl calls drop a placeholder at their -out path so CA/leaf material
    "exists" afterwards; service commands are no-ops.
    """

    def __init__(self):
        self.steps = []
        self.failures = []

    def fail_when(self, predicate):
        self.failures.append(predicate)

    def argvs(self):
        return [step.argv for step in self.steps]

    def ran(self, *prefix):
        return any(argv[:len(prefix)] == prefix for argv in self.argvs())

    def run(self, step):
        self.steps.append(step)
        argv = step.argv
        for predicate in self.failures:
            if predicate(step):
                raise CommandError(step.description, argv, 1, "simulated failure")

        command, args = argv[0], argv[1:]
        paths = [a for a in args if not a.startswith("-")]
        if command == "tee":
            target = Path(args[0])
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(step.input or "")
            return step.input or ""
        if command == "mkdir":
            for p in paths:
                Path(p).mkdir(parents=True, exist_ok=True)
        elif command == "rm":
            for p in paths:
                path = Path(p)
                if path.is_symlink() or path.is_file():
                    path.unlink()
                elif path.is_dir():
                    shutil.rmtree(path)
        elif command == "ln":
            source, link = Path(args[-2]), Path(args[-1])
            if link.is_symlink() or link.exists():
                link.unlink()
            link.symlink_to(source)
        elif command == "cp":
            target = Path(args[1])
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(Path(args[0]).read_text())
        elif command == "openssl" and "-out" in args:
            out = Path(args[args.index("-out") + 1])
            out.parent.mkdir(parents=True, exist_ok=True)
            out.write_text(f"fake {args[0]} output\n")
        return ""


def make_settings(root: Path, **overrides) -> Settings:
    values = dict(
        app_dir=root / "app",
        web_root=root / "www",
        ssl_cert_dir=root / "ssl" / "certs",
        ssl_key_dir=root / "ssl" / "private",
        nginx_dir=root / "nginx",
        hosts_file=root / "hosts",
        php_bin_dir=root / "bin",
        system_ca_dir=root / "ca-certificates",
        redhat_ca_dir=root / "anchors",
        user_home=root / "home",
        site_owner="dev",
        elevate_with="",
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings(tmp_path):
    """Debian-style host: sites-available layout, fastcgi snippet, ca-certificates."""
    s = make_settings(tmp_path)
    (s.nginx_dir / "sites-available").mkdir(parents=True)
    (s.nginx_dir / "sites-enabled").mkdir()
    (s.nginx_dir / "snippets").mkdir()
    (s.nginx_dir / "snippets" / "fastcgi-php.conf").write_text("# snippet\n")
    s.system_ca_dir.mkdir()
    s.web_root.mkdir()
    s.user_home.mkdir()
    s.hosts_file.write_text("127.0.0.1 localhost\n::1 localhost\n")
    return s


@pytest.fixture(autouse=True)
def not_under_sudo(monkeypatch):
    monkeypatch.delenv("SUDO_USER", raising=False)


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def registry(settings):
    return SiteRegistry(settings.registry_file)


@pytest.fixture
def manager(settings, runner, registry):
    return SiteManager(settings, runner, registry)


HOST_COMMANDS = {"update-ca-certificates", "update-ca-trust", "certutil", "nginx", "systemctl"}

needs_openssl = pytest.mark.skipif(shutil.which("openssl") is None, reason="openssl not installed")


class LocalRunner(CommandRunner):
    """Runs real commands without elevation, skipping host-wide services."""

    def __init__(self):
        super().__init__("")
        self.skipped = []

    def run(self, step):
        if step.argv[0] in HOST_COMMANDS:
            self.skipped.append(step)
            return ""
        return super().run(step)


def verify(ca_cert: Path, cert: Path) -> bool:
    result = subprocess.run(
        ["openssl", "verify", "-CAfile", str(ca_cert), str(cert)],
        capture_output=True, text=True,
    )
    return result.returncode == 0
