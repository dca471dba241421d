"""Root certificate authority lifecycle and trust store installation.

The CA key and certificate live in the application directory and are
generated lazily. Trust is installed into:

- the OS store (update-ca-certificates or update-ca-trust),
- the Chromium NSS database in ~/.pki/nssdb,
- every Firefox-family profile found under the user's home.

Each trust target is attempted on its own so a missing browser never blocks
CA bootstrap.
"""

import logging
import os
from pathlib import Path
from typing import List, Optional, Tuple

from .config import Settings, get_jinja_env
from .errors import CommandError
from .privileged import CommandRunner, Pipeline, Step, write_file
from .probe import Capabilities, probe_capabilities

logger = logging.getLogger(__name__)

CA_DAYS = 3650
KEY_BITS = 2048
ANCHOR_NAME = "SiteManagerCA.crt"
TRUST_FLAGS = "C,,"

FIREFOX_ROOTS = (
    Path(".mozilla/firefox"),
    Path("snap/firefox/common/.mozilla/firefox"),
)

TrustTarget = Tuple[str, List[Step]]


def runs_under_sudo() -> bool:
    return os.geteuid() == 0 and bool(os.environ.get("SUDO_USER"))


class CertificateAuthority:
    """Owns the root key/certificate pair and its trust installations."""

    def __init__(self, settings: Settings, runner: CommandRunner):
        self.settings = settings
        self.runner = runner

    @property
    def key_path(self) -> Path:
        return self.settings.ca_key

    @property
    def cert_path(self) -> Path:
        return self.settings.ca_cert

    def exists(self) -> bool:
        return self.key_path.exists() and self.cert_path.exists()

    def ensure(self, capabilities: Optional[Capabilities] = None) -> Tuple[Path, Path]:
        """Return (key, cert), generating and trusting a new CA if needed.

        A browser that cannot be updated is tolerated. If the OS store
        rejects the new CA, or every target does, the CA is withdrawn and
        CommandError is raised.
        """
        if self.exists():
            return self.key_path, self.cert_path

        if self.key_path.exists() or self.cert_path.exists():
            logger.warning("Incomplete CA material in %s, regenerating", self.settings.ca_dir)
            self.delete_material()

        self.generate()
        capabilities = capabilities or probe_capabilities(self.settings)
        names = [name for name, _ in self.trust_targets(capabilities)]
        failed = self.install_trust(capabilities)
        if "system" in failed or set(failed) == set(names):
            self.remove(capabilities)
            self.delete_material()
            raise CommandError("Install CA trust",
                               output=f"could not trust the CA in {', '.join(failed)}")
        return self.key_path, self.cert_path

    def generate(self):
        """Create a 2048-bit key and a 10-year self-signed root certificate."""
        ca_dir = self.settings.ca_dir
        ca_dir.mkdir(parents=True, exist_ok=True)
        ca_dir.chmod(0o700)

        request_config = ca_dir / "rootCA.cnf"
        content = get_jinja_env().get_template("ca.cnf.j2").render(ca_name=self.settings.ca_name)

        logger.info("Generating root CA in %s", ca_dir)
        try:
            Pipeline(self.runner).strict(
                Step("Generate CA key",
                     ("openssl", "genrsa", "-out", self.key_path, str(KEY_BITS)),
                     elevated=False),
                Step("Restrict CA key permissions", ("chmod", "600", self.key_path),
                     elevated=False),
                write_file("Write CA request config", request_config, content, elevated=False),
                Step("Self-sign CA certificate",
                     ("openssl", "req", "-x509", "-new", "-nodes",
                      "-key", self.key_path, "-sha256", "-days", str(CA_DAYS),
                      "-config", request_config, "-out", self.cert_path),
                     elevated=False),
                *self._owner_steps(self.settings.app_dir),
            ).cleanup(
                Step("Remove CA request config", ("rm", "-f", request_config), elevated=False),
            ).run()
        except CommandError:
            self.delete_material()
            raise

    def firefox_profiles(self) -> List[Path]:
        profiles = []
        for root in FIREFOX_ROOTS:
            base = self.settings.user_home / root
            if base.is_dir():
                profiles.extend(sorted(p for p in base.glob("*.default*") if p.is_dir()))
        return profiles

    def _owner_steps(self, path: Path) -> List[Step]:
        """Hand user-scoped files back to the invoking user when run under sudo."""
        if not runs_under_sudo():
            return []
        owner = self.settings.site_owner
        return [Step(f"Give {path} to {owner}", ("chown", "-R", f"{owner}:", path), elevated=False)]

    @property
    def chromium_db(self) -> Path:
        return self.settings.user_home / ".pki" / "nssdb"

    def _anchor(self, capabilities: Capabilities) -> Optional[Path]:
        if capabilities.trust_store == "debian":
            return self.settings.system_ca_dir / ANCHOR_NAME
        if capabilities.trust_store == "redhat":
            return self.settings.redhat_ca_dir / ANCHOR_NAME
        return None

    def _refresh_step(self, capabilities: Capabilities, fresh: bool = False) -> Step:
        if capabilities.trust_store == "redhat":
            return Step("Refresh system trust", ("update-ca-trust", "extract"))
        argv = ("update-ca-certificates", "--fresh") if fresh else ("update-ca-certificates",)
        return Step("Refresh system trust", argv)

    def _nss_add(self, db: Path) -> Step:
        return Step(
            f"Trust CA in {db}",
            ("certutil", "-d", f"sql:{db}", "-A", "-t", TRUST_FLAGS,
             "-n", self.settings.ca_name, "-i", self.cert_path),
            elevated=False,
        )

    def _nss_delete(self, db: Path) -> Step:
        return Step(
            f"Untrust CA in {db}",
            ("certutil", "-d", f"sql:{db}", "-D", "-n", self.settings.ca_name),
            elevated=False,
        )

    def trust_targets(self, capabilities: Capabilities) -> List[TrustTarget]:
        """Per-target step lists that install the CA certificate."""
        targets: List[TrustTarget] = []

        anchor = self._anchor(capabilities)
        if anchor is not None:
            targets.append(("system", [
                Step("Copy CA to system store", ("cp", self.cert_path, anchor)),
                self._refresh_step(capabilities),
            ]))

        db = self.chromium_db
        chromium_steps = []
        if not (db / "cert9.db").exists():
            chromium_steps.append(Step("Create NSS directory", ("mkdir", "-p", db), elevated=False))
            chromium_steps.append(Step(
                "Create NSS database",
                ("certutil", "-N", "--empty-password", "-d", f"sql:{db}"),
                elevated=False,
            ))
        chromium_steps.append(self._nss_add(db))
        chromium_steps.extend(self._owner_steps(db.parent))
        targets.append(("chromium", chromium_steps))

        for profile in self.firefox_profiles():
            targets.append((f"firefox:{profile.name}",
                            [self._nss_add(profile), *self._owner_steps(profile)]))

        return targets

    def install_trust(self, capabilities: Optional[Capabilities] = None) -> List[str]:
        """Install the CA into every trust target, continuing past failures.

        Returns the names of targets that could not be updated.
        """
        capabilities = capabilities or probe_capabilities(self.settings)
        if capabilities.trust_store is None:
            logger.warning("No supported system trust store found; skipping OS trust")

        failed = []
        for name, steps in self.trust_targets(capabilities):
            try:
                Pipeline(self.runner).extend(steps).run()
                logger.info("Installed CA trust: %s", name)
            except CommandError as e:
                logger.warning("Could not install CA trust in %s: %s", name, e)
                failed.append(name)
        return failed

    def remove(self, capabilities: Optional[Capabilities] = None):
        """Uninstall the CA from every trust target, ignoring all failures."""
        capabilities = capabilities or probe_capabilities(self.settings)
        pipeline = Pipeline(self.runner)

        anchor = self._anchor(capabilities)
        if anchor is not None:
            pipeline.best_effort(
                Step("Remove CA from system store", ("rm", "-f", anchor)),
                self._refresh_step(capabilities, fresh=True),
            )

        pipeline.best_effort(self._nss_delete(self.chromium_db))
        for profile in self.firefox_profiles():
            pipeline.best_effort(self._nss_delete(profile))

        pipeline.run()

    def delete_material(self):
        self.key_path.unlink(missing_ok=True)
        self.cert_path.unlink(missing_ok=True)

    def regenerate(self, capabilities: Optional[Capabilities] = None) -> Tuple[Path, Path]:
        """Replace the CA wholesale: uninstall, delete, then bootstrap anew."""
        capabilities = capabilities or probe_capabilities(self.settings)
        self.remove(capabilities)
        self.delete_material()
        return self.ensure(capabilities)
