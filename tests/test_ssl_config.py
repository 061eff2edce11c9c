import os
from pathlib import Path

import certifi
import pytest

from utils import ssl_config


@pytest.fixture(autouse=True)
def clean_ssl(monkeypatch):
    """Fresh configuration per test; env changes made by the module are undone."""
    for name in ("DISABLE_SSL_VERIFY", "SSL_CERT_FILE", "REQUESTS_CA_BUNDLE", "CURL_CA_BUNDLE"):
        monkeypatch.setenv(name, "")
    ssl_config.reset_ssl()
    yield
    ssl_config.reset_ssl()


def test_default_verifies():
    assert ssl_config.get_verify() is True


def test_disabled(monkeypatch):
    monkeypatch.setenv("DISABLE_SSL_VERIFY", "true")
    assert ssl_config.get_verify() is False


def test_custom_certificate(monkeypatch):
    bundle = certifi.where()
    monkeypatch.setenv("SSL_CERT_FILE", bundle)

    assert ssl_config.get_verify() == str(Path(bundle).resolve())
    assert os.environ["REQUESTS_CA_BUNDLE"] == str(Path(bundle).resolve())


def test_missing_certificate(monkeypatch, tmp_path):
    monkeypatch.setenv("SSL_CERT_FILE", str(tmp_path / "missing.pem"))
    assert ssl_config.get_verify() is True


def test_unreadable_certificate(monkeypatch, tmp_path):
    cert = tmp_path / "broken.pem"
    cert.write_text("not a certificate")
    monkeypatch.setenv("SSL_CERT_FILE", str(cert))

    assert ssl_config.get_verify() is True
    assert os.environ["REQUESTS_CA_BUNDLE"] == ""


def test_configured_once(monkeypatch):
    assert ssl_config.get_verify() is True
    monkeypatch.setenv("DISABLE_SSL_VERIFY", "1")
    assert ssl_config.get_verify() is True
