# tls.py
# author: Andrew Kingdom, Copyright(C)2025, All rights reserved, MIT License (CC-BY).
"""
TLS certificates for the listener.

Local servers use a CA-signed localhost certificate:
- Ensures a local root CA exists under <settings>/tls/local/
- Attempts to install the CA into system trust (best-effort, once per session)
- Issues a leaf certificate signed by the CA with correct EKU/KU and SANs
- Regenerates the leaf if missing, near expiry, or when forced

Global servers use globally-trusted certificates that have already been
provisioned under <settings>/tls/global/<domain>/.
"""

import ipaddress
import logging
import os
import socket
import subprocess
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Tuple

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from .errors import CertificateError

CA_VALIDITY_DAYS = 3650
LEAF_VALIDITY_DAYS = 365
# Leaf certificates closer than this to expiry are reissued.
RENEWAL_WINDOW_DAYS = 7

# Whether the trust store install has been attempted this session.
_trust_install_attempted = False


def get_lan_ip() -> str:
    """Gets the LAN IP address of this machine, falling back to loopback."""
    try:
        s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            # UDP connect sends nothing; it only selects the outbound interface.
            s.connect(("8.8.8.8", 80))
            return s.getsockname()[0]
        finally:
            s.close()
    except OSError as e:
        logging.warning(f"Error getting IP: {e}")
        return "127.0.0.1"


def _write_pem(path: Path, data: bytes, mode: int = 0o600):
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "wb") as f:
        f.write(data)
    try:
        os.chmod(path, mode)
    except OSError:
        pass


def _key_usage(signing: bool) -> x509.KeyUsage:
    return x509.KeyUsage(
        digital_signature=not signing,
        key_encipherment=not signing,
        content_commitment=False,
        data_encipherment=False,
        key_agreement=False,
        key_cert_sign=signing,
        crl_sign=signing,
        encipher_only=False,
        decipher_only=False,
    )


def create_ca_if_missing(ca_key_path: Path, ca_cert_path: Path, force: bool = False) -> bool:
    """Create the persistent local root CA. Returns True if a new one was written."""
    if ca_key_path.exists() and ca_cert_path.exists() and not force:
        logging.debug("LocalCA: existing CA found")
        return False
    logging.info("LocalCA: Generating root CA...")
    ca_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    subject = issuer = x509.Name([
        x509.NameAttribute(NameOID.COMMON_NAME, "Place Local CA"),
        x509.NameAttribute(NameOID.ORGANIZATION_NAME, "Place Local Development"),
    ])
    now = datetime.now(timezone.utc)
    ca_cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(ca_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=CA_VALIDITY_DAYS))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .add_extension(_key_usage(signing=True), critical=True)
        .add_extension(x509.SubjectKeyIdentifier.from_public_key(ca_key.public_key()), critical=False)
        .sign(ca_key, hashes.SHA256())
    )

    _write_pem(ca_key_path, ca_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption()
    ))
    _write_pem(ca_cert_path, ca_cert.public_bytes(serialization.Encoding.PEM), mode=0o644)
    logging.info("LocalCA: Root CA created at %s", ca_cert_path)
    return True


def install_ca_system_trust(ca_cert_path: Path) -> bool:
    """Try installing the CA into the system trust store (best-effort)."""
    if not ca_cert_path.exists():
        logging.error("LocalCA: CA cert not present for install attempt.")
        return False
    try:
        if sys.platform == "darwin":
            cmd = ["sudo", "security", "add-trusted-cert", "-d", "-r", "trustRoot",
                   "-k", "/Library/Keychains/System.keychain", str(ca_cert_path)]
            logging.info("LocalCA: Installing CA into macOS System keychain (may prompt for sudo)...")
            subprocess.run(cmd, check=True, capture_output=True, text=True)
        elif sys.platform == "win32":
            cmd = ["certutil", "-addstore", "Root", str(ca_cert_path)]
            logging.info("LocalCA: Installing CA into Windows Root store (requires admin)...")
            subprocess.run(cmd, check=True, capture_output=True, text=True)
        else:
            dest = Path("/usr/local/share/ca-certificates") / (ca_cert_path.stem + ".crt")
            logging.info("LocalCA: Installing CA into Linux trust store (may prompt for sudo)...")
            subprocess.run(["sudo", "cp", str(ca_cert_path), str(dest)], check=True)
            subprocess.run(["sudo", "update-ca-certificates"], check=True)
        return True
    except subprocess.CalledProcessError as e:
        logging.error("LocalCA: system trust install failed: %s", getattr(e, "stderr", str(e)))
    except FileNotFoundError as e:
        logging.error("LocalCA: required system tool missing for install: %s", e)
    return False


def leaf_is_current(cert_path: Path, key_path: Path) -> bool:
    if not (cert_path.exists() and key_path.exists()):
        return False
    try:
        existing = x509.load_pem_x509_certificate(cert_path.read_bytes())
    except ValueError:
        logging.warning("LocalCA: existing cert present but failed to parse; regenerating.")
        return False
    if existing.not_valid_after_utc > datetime.now(timezone.utc) + timedelta(days=RENEWAL_WINDOW_DAYS):
        logging.info("LocalCA: existing leaf cert valid until %s; skipping regen.", existing.not_valid_after_utc.isoformat())
        return True
    return False


def _subject_alternative_names():
    san_list = [
        x509.DNSName("localhost"),
        x509.IPAddress(ipaddress.IPv4Address("127.0.0.1")),
        x509.IPAddress(ipaddress.IPv6Address("::1")),
    ]
    lan_ip = get_lan_ip()
    if lan_ip not in ("127.0.0.1", "::1", "0.0.0.0"):
        try:
            san_list.append(x509.IPAddress(ipaddress.ip_address(lan_ip)))
        except ValueError:
            logging.debug("LocalCA: get_lan_ip returned non-IP %r", lan_ip)
    return san_list


def issue_leaf_certificate(ca_key_path: Path, ca_cert_path: Path, cert_path: Path, key_path: Path) -> None:
    logging.info("LocalCA: Creating new leaf certificate signed by local CA...")
    ca_key = serialization.load_pem_private_key(ca_key_path.read_bytes(), password=None)
    ca_cert = x509.load_pem_x509_certificate(ca_cert_path.read_bytes())
    leaf_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)

    now = datetime.now(timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "localhost")]))
        .issuer_name(ca_cert.subject)
        .public_key(leaf_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=LEAF_VALIDITY_DAYS))
        .add_extension(x509.SubjectAlternativeName(_subject_alternative_names()), critical=False)
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .add_extension(_key_usage(signing=False), critical=True)
        .add_extension(x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False)
        .add_extension(x509.SubjectKeyIdentifier.from_public_key(leaf_key.public_key()), critical=False)
        .add_extension(x509.AuthorityKeyIdentifier.from_issuer_public_key(ca_cert.public_key()), critical=False)
        .sign(private_key=ca_key, algorithm=hashes.SHA256())
    )

    _write_pem(key_path, leaf_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption()
    ))
    _write_pem(cert_path, cert.public_bytes(serialization.Encoding.PEM), mode=0o644)
    logging.info("LocalCA: Wrote signed leaf cert %s and key %s", cert_path, key_path)


def generate_local_certificate(tls_directory: Path, force_regenerate: bool = False,
                               install_trust: bool = True) -> Tuple[Path, Path]:
    """
    Make sure a CA-signed localhost certificate exists in `tls_directory`.

    Returns (cert_path, key_path).
    """
    global _trust_install_attempted

    ca_key_path = tls_directory / "ca.key.pem"
    ca_cert_path = tls_directory / "ca.cert.pem"
    cert_path = tls_directory / "localhost.pem"
    key_path = tls_directory / "localhost-key.pem"
    tls_directory.mkdir(parents=True, exist_ok=True)

    new_ca = create_ca_if_missing(ca_key_path, ca_cert_path)

    if install_trust and not _trust_install_attempted:
        if install_ca_system_trust(ca_cert_path):
            logging.info("LocalCA: CA install attempted (reported success).")
        else:
            logging.warning("LocalCA: CA install did not complete automatically; you may need to import %s manually.", ca_cert_path)
        _trust_install_attempted = True

    # A new CA invalidates every leaf it did not sign.
    if new_ca or force_regenerate or not leaf_is_current(cert_path, key_path):
        issue_leaf_certificate(ca_key_path, ca_cert_path, cert_path, key_path)
    else:
        logging.info("LocalCA: Using existing certificate: %s", cert_path)
    return cert_path, key_path


def global_certificate_paths(settings: Path, domain: str) -> Tuple[Path, Path]:
    """Locate the provisioned certificate chain and key for `domain`."""
    domain_directory = settings / "tls" / "global" / domain
    cert_path = domain_directory / "fullchain.pem"
    key_path = domain_directory / "privkey.pem"
    for path in (cert_path, key_path):
        if not path.is_file():
            raise CertificateError(
                f"No globally-trusted certificate for {domain} (missing {path}). "
                "Provision one (e.g. with certbot) and copy fullchain.pem and privkey.pem there."
            )
    return cert_path, key_path
