import re
import logging
import ipaddress
from typing import Optional, Tuple

import requests

from pbkeeper import settings

log = logging.getLogger(__name__)

IPV4_PREFIX = re.compile(r"^\d+\.\d+\.\d+\.\d+")
IPV4_WITH_PORT = re.compile(r"^\d+\.\d+\.\d+\.\d+:\d+$")
DOMAIN_NAME = re.compile(r"^[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")


def build_public_url(host: str, port: int) -> Optional[str]:
    """
    Turns a configured host value into the advertised public URL.

    Examples:
        "http://1.2.3.4"   -> "http://1.2.3.4:<port>"
        "https://my.site"  -> "https://my.site"
        "1.2.3.4:9000"     -> "http://1.2.3.4:9000"
        "my.site"          -> "https://my.site"
        "1.2.3.4"          -> "http://1.2.3.4:<port>"

    :return: The URL, or None if host is empty.
    """
    if not host:
        return None

    if host.startswith(("http://", "https://")):
        host_part = re.sub(r"^https?://", "", host)
        if ":" in host_part:
            return host
        if IPV4_PREFIX.match(host_part):
            return f"{host}:{port}"
        return host

    if IPV4_WITH_PORT.match(host):
        return f"http://{host}"

    if DOMAIN_NAME.match(host) and not IPV4_PREFIX.match(host):
        return f"https://{host}"

    return f"http://{host}:{port}"


def detect_public_ip() -> Optional[str]:
    """
    Asks an external IP-echo service for this machine's public address.

    :return: The IP address as a string, or None if detection failed.
    """
    try:
        response = requests.get(settings.PUBLIC_IP_URL, timeout=settings.PUBLIC_IP_TIMEOUT)
        response.raise_for_status()
        candidate = response.text.strip()
        ipaddress.ip_address(candidate)
        return candidate
    except (requests.RequestException, ValueError) as e:
        log.debug(f"Failed to get public IP: {e}")
        return None


def resolve_bind_and_url(
    expose_admin: bool, host: str, port: int, status
) -> Tuple[str, str, Optional[str]]:
    """
    Decides where the server listens and which URL is advertised.

    With exposure disabled the server binds to loopback only and any configured
    host is ignored. With exposure enabled it binds to the wildcard address and
    the public URL comes from the configured host or, if empty, IP detection.

    :param status: The StartupStatus receiving warnings.
    :return: (bind_address, public_url, detected_ip)
    """
    if not expose_admin:
        return f"{settings.LOOPBACK_HOST}:{port}", f"http://localhost:{port}", None

    bind_address = f"{settings.WILDCARD_HOST}:{port}"
    if host:
        return bind_address, build_public_url(host, port), None

    detected_ip = detect_public_ip()
    if detected_ip is None:
        status.warn("Could not detect public IP - configure network.host manually")
        return bind_address, f"http://{settings.WILDCARD_HOST}:{port}", None

    return bind_address, f"http://{detected_ip}:{port}", detected_ip


def probe_health(url: str) -> bool:
    """
    Checks that the backend answers on its public URL.

    :return: True only on HTTP 200. Never raises.
    """
    health_url = f"{url.rstrip('/')}/api/health"
    try:
        response = requests.get(health_url, timeout=settings.HEALTH_CHECK_TIMEOUT)
        log.debug(f"Health check {health_url} returned {response.status_code}")
        return response.status_code == 200
    except requests.RequestException as e:
        log.debug(f"Health check {health_url} failed: {e}")
        return False
