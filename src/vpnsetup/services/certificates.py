"""Server certificate provisioning.

Two sources are supported:

- self-signed: a local CA generated with strongSwan's ``pki`` tool issues
  the server certificate. The CA is created once and reused on later runs
  so existing clients keep trusting the server.
- letsencrypt: ``certbot certonly --standalone`` obtains a certificate for
  the domain, which is then linked into /etc/ipsec.d.

Either way the certificate and key are checked for existence afterwards;
a missing file aborts the run before ipsec.conf references it.
"""

import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from vpnsetup.core.audit import AuditEventType, get_audit_logger
from vpnsetup.core.config import CertificateConfig, CertMode
from vpnsetup.core.context import ExecutionContext
from vpnsetup.core.exceptions import (
    CertificateError,
    ExecutionError,
    MissingCertificateError,
    ValidationError,
)
from vpnsetup.core.executor import CommandExecutor
from vpnsetup.core.files import SECURE_DIR_PERMS, SECURE_FILE_PERMS


SERVER_CERT_NAME = "server-cert.pem"
SERVER_KEY_NAME = "server-key.pem"
CA_CERT_NAME = "ca-cert.pem"
CA_KEY_NAME = "ca-key.pem"

PKI_SUBDIRS = ("cacerts", "certs", "private")


@dataclass
class CertificateBundle:
    """Where the server certificate ended up and how strongSwan refers to it.

    Attributes:
        mode: Certificate source
        cert_path: Server certificate under /etc/ipsec.d/certs
        key_path: Server private key under /etc/ipsec.d/private
        ca_path: CA certificate clients must trust (self-signed only)
    """
    mode: CertMode
    cert_path: Path
    key_path: Path
    ca_path: Optional[Path] = None

    @property
    def leftcert(self) -> str:
        """Value for ``leftcert=``, relative to /etc/ipsec.d/certs."""
        return self.cert_path.name

    @property
    def key_ref(self) -> str:
        """Key reference for the ``: RSA`` line, relative to /etc/ipsec.d/private."""
        return self.key_path.name


class CertificateService:
    """Generates or obtains the VPN server certificate."""

    def __init__(
        self,
        ctx: ExecutionContext,
        executor: CommandExecutor,
        config: CertificateConfig,
        ipsec_dir: Path = Path("/etc/ipsec.d"),
    ) -> None:
        self.ctx = ctx
        self.executor = executor
        self.config = config
        self.ipsec_dir = ipsec_dir
        self.audit = get_audit_logger()

    @property
    def installed_cert(self) -> Path:
        return self.ipsec_dir / "certs" / SERVER_CERT_NAME

    @property
    def installed_key(self) -> Path:
        return self.ipsec_dir / "private" / SERVER_KEY_NAME

    def obtain(self, domain: str, email: Optional[str] = None) -> CertificateBundle:
        """Provision a certificate using the configured mode."""
        if self.config.mode is CertMode.LETSENCRYPT and not email:
            raise ValidationError(
                "Email address is required for Let's Encrypt",
                hint="Pass --email or set certificates.email in the config file",
            )

        try:
            if self.config.mode is CertMode.LETSENCRYPT:
                bundle = self.letsencrypt(domain, email)
            else:
                bundle = self.self_signed(domain)
        except CertificateError as e:
            self.audit.log_failure(AuditEventType.CERTIFICATE_ISSUE, "certificate", domain, str(e))
            raise

        self.audit.log_success(
            AuditEventType.CERTIFICATE_ISSUE,
            "certificate",
            domain,
            parameters={"mode": bundle.mode.value, "cert": str(bundle.cert_path)},
        )
        return bundle

    # ------------------------------------------------------------------
    # Self-signed PKI
    # ------------------------------------------------------------------

    def self_signed(self, domain: str) -> CertificateBundle:
        """Create (or reuse) a local CA and issue a server certificate for domain."""
        self.ctx.console.step(f"Generating self-signed certificate for {domain}")

        pki = self.config.pki_dir
        ca_key = pki / "private" / CA_KEY_NAME
        ca_cert = pki / "cacerts" / CA_CERT_NAME
        server_key = pki / "private" / SERVER_KEY_NAME
        server_cert = pki / "certs" / SERVER_CERT_NAME

        self._make_pki_dirs(pki)

        if ca_key.exists() and ca_cert.exists():
            self.ctx.console.info(f"Reusing existing CA from {ca_cert}")
        else:
            self._write_pem(ca_key, self._pki(
                ["--gen", "--type", "rsa", "--size", str(self.config.key_size), "--outform", "pem"],
                "Generate CA key",
            ), SECURE_FILE_PERMS)
            self._write_pem(ca_cert, self._pki(
                [
                    "--self", "--ca",
                    "--lifetime", str(self.config.ca_lifetime_days),
                    "--in", str(ca_key), "--type", "rsa",
                    "--dn", f"CN={self.config.ca_common_name}",
                    "--outform", "pem",
                ],
                "Create self-signed CA certificate",
            ), 0o644)

        self._write_pem(server_key, self._pki(
            ["--gen", "--type", "rsa", "--size", str(self.config.key_size), "--outform", "pem"],
            "Generate server key",
        ), SECURE_FILE_PERMS)

        public_key = self._pki(
            ["--pub", "--in", str(server_key), "--type", "rsa", "--outform", "pem"],
            "Extract server public key",
        )
        self._write_pem(server_cert, self._pki(
            [
                "--issue",
                "--lifetime", str(self.config.server_lifetime_days),
                "--cacert", str(ca_cert),
                "--cakey", str(ca_key),
                "--dn", f"CN={domain}",
                "--san", domain,
                "--flag", "serverAuth",
                "--flag", "ikeIntermediate",
                "--outform", "pem",
            ],
            f"Issue server certificate for {domain}",
            input_data=public_key,
        ), 0o644)

        # The CA private key stays in the PKI directory only
        installed_ca = self.ipsec_dir / "cacerts" / CA_CERT_NAME
        self._install_copy(ca_cert, installed_ca, 0o644)
        self._install_copy(server_cert, self.installed_cert, 0o644)
        self._install_copy(server_key, self.installed_key, SECURE_FILE_PERMS)

        self._verify(self.installed_cert, self.installed_key, installed_ca)
        self.ctx.console.success(f"Server certificate installed: {self.installed_cert}")

        return CertificateBundle(
            mode=CertMode.SELF_SIGNED,
            cert_path=self.installed_cert,
            key_path=self.installed_key,
            ca_path=installed_ca,
        )

    def _make_pki_dirs(self, pki: Path) -> None:
        if self.ctx.dry_run:
            self.ctx.console.dry_run_msg(f"Create {pki}/{{{','.join(PKI_SUBDIRS)}}} (mode 700)")
            return
        try:
            for sub in PKI_SUBDIRS:
                (pki / sub).mkdir(parents=True, exist_ok=True)
            pki.chmod(SECURE_DIR_PERMS)
        except OSError as e:
            raise CertificateError(
                f"Cannot create PKI directory {pki}",
                details=[str(e)],
            ) from e

    def _pki(self, args: list[str], description: str, input_data: Optional[str] = None) -> str:
        try:
            result = self.executor.run(
                ["pki"] + args,
                description=description,
                input_data=input_data,
            )
        except ExecutionError as e:
            raise CertificateError(
                f"pki failed: {description}",
                details=e.details,
                hint="Is strongswan-pki installed? Try: apt-get install strongswan-pki",
            ) from e
        return result.stdout

    def _write_pem(self, path: Path, content: str, permissions: int) -> None:
        if not self.ctx.dry_run and "-----BEGIN" not in content:
            raise MissingCertificateError(
                f"pki produced no PEM output for {path.name}",
                hint="Run the pki command by hand to see its output",
            )
        self.executor.write_file(path, content, permissions=permissions, sensitive=True)

    def _install_copy(self, source: Path, dest: Path, permissions: int) -> None:
        self.ctx.console.verbose(f"Install {source} -> {dest}")
        if self.ctx.dry_run:
            self.ctx.console.dry_run_msg(f"Copy {source} to {dest}")
            return
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            if dest.is_symlink():
                dest.unlink()
            shutil.copyfile(source, dest)
            dest.chmod(permissions)
        except OSError as e:
            raise CertificateError(
                f"Cannot install {source.name} into {dest.parent}",
                details=[str(e)],
            ) from e

    # ------------------------------------------------------------------
    # Let's Encrypt
    # ------------------------------------------------------------------

    def letsencrypt(self, domain: str, email: str) -> CertificateBundle:
        """Obtain a certificate with certbot and link it into /etc/ipsec.d.

        Port 80 must be reachable for the standalone HTTP-01 challenge.
        """
        self.ctx.console.step(f"Obtaining Let's Encrypt certificate for {domain}")

        try:
            self.executor.run(
                [
                    "certbot", "certonly",
                    "--standalone",
                    "--non-interactive",
                    "--agree-tos",
                    "--preferred-challenges", "http",
                    "-m", email,
                    "-d", domain,
                ],
                description="Run certbot",
            )
        except ExecutionError as e:
            raise CertificateError(
                f"certbot could not obtain a certificate for {domain}",
                details=e.details,
                hint="Check that the domain resolves to this server and port 80 is reachable",
            ) from e

        live = self.config.letsencrypt_live_dir / domain
        fullchain = live / "fullchain.pem"
        privkey = live / "privkey.pem"
        self._verify(fullchain, privkey)

        self._link(fullchain, self.installed_cert)
        self._link(privkey, self.installed_key)
        if not self.ctx.dry_run:
            privkey.chmod(SECURE_FILE_PERMS)

        self._verify(self.installed_cert, self.installed_key)
        self.ctx.console.success(f"Let's Encrypt certificate linked: {self.installed_cert}")

        return CertificateBundle(
            mode=CertMode.LETSENCRYPT,
            cert_path=self.installed_cert,
            key_path=self.installed_key,
        )

    def _link(self, target: Path, link: Path) -> None:
        self.ctx.console.verbose(f"Link {link} -> {target}")
        if self.ctx.dry_run:
            self.ctx.console.dry_run_msg(f"Link {link} -> {target}")
            return
        try:
            link.parent.mkdir(parents=True, exist_ok=True)
            if link.exists() or link.is_symlink():
                link.unlink()
            link.symlink_to(target)
        except OSError as e:
            raise CertificateError(
                f"Cannot link {link} to {target}",
                details=[str(e)],
            ) from e

    # ------------------------------------------------------------------

    def _verify(self, *paths: Path) -> None:
        """Fail unless every path exists and is non-empty."""
        if self.ctx.dry_run:
            return

        missing = [p for p in paths if not p.exists() or p.stat().st_size == 0]
        if missing:
            raise MissingCertificateError(
                "Certificate files missing after issuance",
                details=[f"Missing: {p}" for p in missing],
                hint="The issuing command reported success but did not produce these files",
            )
