"""Leaf certificate issuance for managed sites."""

import logging
import secrets
import shutil
import tempfile
from pathlib import Path
from typing import Tuple

from .config import Settings, get_jinja_env
from .privileged import CommandRunner, Pipeline, Step, write_file

logger = logging.getLogger(__name__)

LEAF_DAYS = 365
KEY_BITS = 2048


def build_extensions(domain: str) -> str:
    """X.509 v3 extension file covering domain, *.domain and 127.0.0.1."""
    template = get_jinja_env().get_template("leaf.ext.j2")
    return template.render(domain=domain)


def issue_certificate(
    settings: Settings,
    runner: CommandRunner,
    domain: str,
    ca_key: Path,
    ca_cert: Path,
) -> Tuple[Path, Path]:
    """Generate a key and a CA-signed certificate for domain.

    Existing material for the domain is overwritten. The CSR and extension
    file live in a private temp directory that is removed whether or not
    signing succeeded.

    Returns:
        Tuple of (key_path, cert_path)
    """
    key_path = settings.site_key(domain)
    cert_path = settings.site_cert(domain)

    extensions = build_extensions(domain)
    work_dir = Path(tempfile.mkdtemp(prefix="site-manager-"))
    ext_path = work_dir / f"{domain}.ext"
    csr_path = work_dir / f"{domain}.csr"

    logger.info("Issuing certificate for %s", domain)
    pipeline = Pipeline(runner).strict(
        Step("Create certificate directories",
             ("mkdir", "-p", settings.ssl_cert_dir, settings.ssl_key_dir)),
        write_file("Write certificate extensions", ext_path, extensions, elevated=False),
        Step(f"Generate key for {domain}",
             ("openssl", "genrsa", "-out", key_path, str(KEY_BITS))),
        Step("Restrict key permissions", ("chmod", "600", key_path)),
        Step(f"Create signing request for {domain}",
             ("openssl", "req", "-new", "-key", key_path, "-out", csr_path,
              "-subj", f"/C=US/ST=State/L=City/O=SiteManager Development/CN={domain}")),
        Step(f"Sign certificate for {domain}",
             ("openssl", "x509", "-req", "-in", csr_path,
              "-CA", ca_cert, "-CAkey", ca_key,
              "-set_serial", str(secrets.randbits(63) + 1),
              "-out", cert_path, "-days", str(LEAF_DAYS), "-sha256",
              "-extfile", ext_path)),
        Step("Set certificate permissions", ("chmod", "644", cert_path)),
    ).cleanup(
        Step("Remove signing request", ("rm", "-rf", work_dir)),
    )
    try:
        pipeline.run()
    finally:
        shutil.rmtree(work_dir, ignore_errors=True)

    return key_path, cert_path
