from __future__ import annotations

import datetime
import logging
import os
import secrets
import ssl
import tempfile
from dataclasses import dataclass
from typing import Optional

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from .errors import CertificateGenerationFailed

LOG = logging.getLogger(__name__)

KEY_SIZE = 2048
VALIDITY_DAYS = 365
CLOCK_SKEW = datetime.timedelta(days=1)

SUBJECT = x509.Name(
    [
        x509.NameAttribute(NameOID.COMMON_NAME, "File Share Server"),
        x509.NameAttribute(NameOID.ORGANIZATION_NAME, "File Share"),
        x509.NameAttribute(NameOID.COUNTRY_NAME, "US"),
    ]
)


@dataclass(frozen=True)
class CertificateBundle:
    """Self-signed credential for one HTTPS run. Lives in memory only."""

    private_key: rsa.RSAPrivateKey
    certificate: x509.Certificate
    password: bytes

    def certificate_pem(self) -> bytes:
        return self.certificate.public_bytes(serialization.Encoding.PEM)

    def private_key_pem(self) -> bytes:
        """PKCS#8 PEM of the key, encrypted with the bundle password."""
        return self.private_key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.BestAvailableEncryption(self.password),
        )

    def fingerprint(self) -> str:
        digest = self.certificate.fingerprint(hashes.SHA256()).hex().upper()
        return ":".join(digest[i : i + 2] for i in range(0, len(digest), 2))


def build_certificate(
    private_key: rsa.RSAPrivateKey,
    subject: x509.Name,
    not_before: datetime.datetime,
    not_after: datetime.datetime,
) -> x509.Certificate:
    """Sign a self-signed certificate (issuer == subject) with SHA-256."""
    if not_after <= not_before:
        raise CertificateGenerationFailed("certificate validity window is empty")
    try:
        return (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(subject)
            .public_key(private_key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(not_before)
            .not_valid_after(not_after)
            .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
            .sign(private_key, hashes.SHA256())
        )
    except (ValueError, TypeError) as exc:
        raise CertificateGenerationFailed(f"could not build certificate: {exc}") from exc


def generate_bundle(
    key_size: int = KEY_SIZE,
    validity_days: int = VALIDITY_DAYS,
    subject: x509.Name = SUBJECT,
    now: Optional[datetime.datetime] = None,
    logger: Optional[logging.Logger] = None,
) -> CertificateBundle:
    """Generate a fresh RSA key pair and a self-signed certificate for it."""
    log = logger or LOG
    if key_size < KEY_SIZE:
        raise CertificateGenerationFailed(f"key size {key_size} is below {KEY_SIZE} bits")
    log.info("Generating self-signed TLS certificate...")
    now = now or datetime.datetime.now(datetime.timezone.utc)
    try:
        key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    except (ValueError, TypeError) as exc:
        raise CertificateGenerationFailed(f"could not generate RSA key: {exc}") from exc
    cert = build_certificate(key, subject, now - CLOCK_SKEW, now + datetime.timedelta(days=validity_days))
    bundle = CertificateBundle(private_key=key, certificate=cert, password=secrets.token_urlsafe(24).encode("ascii"))
    log.info("Certificate subject: %s", cert.subject.rfc4514_string())
    log.info("Valid from %s to %s", cert.not_valid_before_utc, cert.not_valid_after_utc)
    return bundle


def build_server_context(bundle: CertificateBundle) -> ssl.SSLContext:
    """
    Server-side TLS context (TLS >= 1.2) loaded from ``bundle``.

    ssl.SSLContext can only read credentials from files, so the PEMs go to a
    private temporary directory that is removed before returning. The key is
    written encrypted with the bundle password.
    """
    ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    ctx.minimum_version = ssl.TLSVersion.TLSv1_2
    try:
        with tempfile.TemporaryDirectory(prefix="shareServer-") as tmp:
            certfile = os.path.join(tmp, "cert.pem")
            keyfile = os.path.join(tmp, "key.pem")
            for path, data in ((certfile, bundle.certificate_pem()), (keyfile, bundle.private_key_pem())):
                fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
                with os.fdopen(fd, "wb") as fh:
                    fh.write(data)
            ctx.load_cert_chain(certfile=certfile, keyfile=keyfile, password=bundle.password)
    except (OSError, ssl.SSLError, ValueError) as exc:
        raise CertificateGenerationFailed(f"could not load TLS credential: {exc}") from exc
    return ctx
