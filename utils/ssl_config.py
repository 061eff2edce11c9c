"""
SSL Configuration Utility - Configure SSL certificate handling once for all outbound clients

Both the Sefaria client (requests) and the OpenRouter client (httpx) ask this
module which `verify` value to use. Configuration runs only once.
"""

import logging
import os
import ssl
from pathlib import Path
from typing import Union

logger = logging.getLogger(__name__)

# Track if SSL has been configured to ensure it only runs once
_ssl_configured = False

# Value handed to requests / httpx as `verify`
_verify: Union[bool, str] = True


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").lower() in ("1", "true", "yes")


def configure_ssl():
    """
    Configure SSL certificate handling based on environment variables.
    This function is idempotent - it only runs once even if called multiple times.

    Environment variables:
    - DISABLE_SSL_VERIFY: Set to "1", "true", or "yes" to disable SSL verification
    - SSL_CERT_FILE: Path to custom SSL certificate file
    """
    global _ssl_configured, _verify

    if _ssl_configured:
        return

    _ssl_configured = True

    cert_file = os.getenv("SSL_CERT_FILE", "")

    if _env_flag("DISABLE_SSL_VERIFY"):
        _configure_ssl_disable()
        if cert_file:
            logger.warning("SSL_CERT_FILE is set but SSL verification is disabled")
        return

    if not cert_file:
        return

    cert_path = Path(cert_file)
    if not cert_path.exists():
        logger.warning(
            "Certificate file not found: %s - keeping default verification", cert_path
        )
        return

    cert_abs_path = str(cert_path.resolve())
    try:
        ssl.create_default_context(cafile=cert_abs_path)
    except (ssl.SSLError, OSError) as e:
        logger.warning("Could not load certificate %s: %s", cert_abs_path, e)
        return

    # requests honours REQUESTS_CA_BUNDLE, httpx gets the path as `verify`
    os.environ["REQUESTS_CA_BUNDLE"] = cert_abs_path
    os.environ["SSL_CERT_FILE"] = cert_abs_path
    _verify = cert_abs_path
    logger.info("Using custom SSL certificate: %s", cert_abs_path)


def _configure_ssl_disable():
    """Configure SSL to be disabled for outbound HTTP clients"""
    global _verify

    _verify = False
    os.environ["REQUESTS_CA_BUNDLE"] = ""
    os.environ["CURL_CA_BUNDLE"] = ""

    import urllib3

    urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)
    logger.warning("SSL verification is DISABLED for outbound requests")


def get_verify() -> Union[bool, str]:
    """Returns the `verify` argument for requests / httpx"""
    configure_ssl()
    return _verify


def reset_ssl():
    """Forget the cached configuration (used by tests)"""
    global _ssl_configured, _verify
    _ssl_configured = False
    _verify = True
