import ipaddress

import pytest
from cryptography import x509

from place_site import tls
from place_site.errors import CertificateError
from place_site.tls import generate_local_certificate, global_certificate_paths


@pytest.fixture(autouse=True)
def fixed_lan_ip(monkeypatch):
    monkeypatch.setattr(tls, "get_lan_ip", lambda: "192.168.1.5")


def load(path):
    return x509.load_pem_x509_certificate(path.read_bytes())


def test_local_certificate_is_signed_by_the_local_ca(tmp_path):
    cert_path, key_path = generate_local_certificate(tmp_path, install_trust=False)

    assert key_path.is_file()
    leaf = load(cert_path)
    ca = load(tmp_path / "ca.cert.pem")
    assert leaf.issuer == ca.subject
    names = leaf.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
    assert "localhost" in names.get_values_for_type(x509.DNSName)
    assert ipaddress.ip_address("192.168.1.5") in names.get_values_for_type(x509.IPAddress)
    assert ca.extensions.get_extension_for_class(x509.BasicConstraints).value.ca


def test_existing_certificate_is_reused_unless_forced(tmp_path):
    cert_path, _ = generate_local_certificate(tmp_path, install_trust=False)
    first = cert_path.read_bytes()

    generate_local_certificate(tmp_path, install_trust=False)
    assert cert_path.read_bytes() == first

    generate_local_certificate(tmp_path, force_regenerate=True, install_trust=False)
    assert cert_path.read_bytes() != first


def test_new_ca_reissues_the_leaf(tmp_path):
    cert_path, _ = generate_local_certificate(tmp_path, install_trust=False)
    (tmp_path / "ca.key.pem").unlink()

    generate_local_certificate(tmp_path, install_trust=False)

    assert load(cert_path).issuer == load(tmp_path / "ca.cert.pem").subject
    assert tls.leaf_is_current(cert_path, tmp_path / "localhost-key.pem")


def test_global_certificate_paths(tmp_path):
    with pytest.raises(CertificateError, match="example.test"):
        global_certificate_paths(tmp_path, "example.test")

    domain_directory = tmp_path / "tls" / "global" / "example.test"
    domain_directory.mkdir(parents=True)
    (domain_directory / "fullchain.pem").write_text("chain")
    (domain_directory / "privkey.pem").write_text("key")

    assert global_certificate_paths(tmp_path, "example.test") == (
        domain_directory / "fullchain.pem",
        domain_directory / "privkey.pem",
    )
