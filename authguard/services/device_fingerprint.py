# authguard/services/device_fingerprint.py
"""
Device fingerprinting from request metadata.

The fingerprint is a SHA-256 over the pipe-joined user agent, language and
encoding headers plus the browser, OS and device type parsed from the user
agent. Pure and deterministic; nothing here touches the network or the DB.
"""

import hashlib
from dataclasses import dataclass

DEFAULT_DEVICE_TYPE = "desktop"

# Order matters: Edge and Opera carry "Chrome" in their UA, Chrome carries "Safari"
_BROWSER_MARKERS: tuple[tuple[str, str], ...] = (
    ("Edg/", "Edge"),
    ("Edge/", "Edge"),
    ("OPR/", "Opera"),
    ("Opera", "Opera"),
    ("SamsungBrowser", "Samsung Browser"),
    ("Firefox/", "Firefox"),
    ("FxiOS", "Firefox"),
    ("CriOS", "Chrome"),
    ("Chrome/", "Chrome"),
    ("Chromium", "Chromium"),
    ("Safari/", "Safari"),
    ("MSIE", "IE"),
    ("Trident/", "IE"),
)

_OS_MARKERS: tuple[tuple[str, str], ...] = (
    ("Windows Phone", "Windows Phone"),
    ("Windows", "Windows"),
    ("iPhone", "iOS"),
    ("iPad", "iOS"),
    ("iPod", "iOS"),
    ("Android", "Android"),
    ("CrOS", "Chrome OS"),
    ("Mac OS X", "Mac OS"),
    ("Macintosh", "Mac OS"),
    ("Ubuntu", "Ubuntu"),
    ("Linux", "Linux"),
)

_TABLET_MARKERS = ("iPad", "Tablet", "Kindle", "Silk/", "PlayBook")
_MOBILE_MARKERS = ("Mobi", "iPhone", "iPod", "Android", "Windows Phone", "BlackBerry")


@dataclass(frozen=True)
class DeviceInfo:
    fingerprint: str
    browser: str | None
    os: str | None
    device_type: str = DEFAULT_DEVICE_TYPE


def _match(user_agent: str, markers: tuple[tuple[str, str], ...]) -> str | None:
    for marker, name in markers:
        if marker in user_agent:
            return name
    return None


def detect_device_type(user_agent: str) -> str:
    """Classify a user agent as tablet, mobile or desktop (the default)."""
    if any(marker in user_agent for marker in _TABLET_MARKERS):
        return "tablet"
    # Android without "Mobile" is a tablet by Google's UA convention
    if "Android" in user_agent and "Mobile" not in user_agent:
        return "tablet"
    if any(marker in user_agent for marker in _MOBILE_MARKERS):
        return "mobile"
    return DEFAULT_DEVICE_TYPE


def extract_device_fingerprint(
    user_agent: str | None,
    accept_language: str | None,
    accept_encoding: str | None,
) -> DeviceInfo:
    """
    Build the DeviceInfo for a client.

    Missing headers are treated as empty strings so the same client always
    hashes to the same fingerprint.
    """
    user_agent = user_agent or ""
    browser = _match(user_agent, _BROWSER_MARKERS)
    os_name = _match(user_agent, _OS_MARKERS)
    device_type = detect_device_type(user_agent)

    components = [
        user_agent,
        accept_language or "",
        accept_encoding or "",
        browser or "",
        os_name or "",
        device_type,
    ]
    fingerprint = hashlib.sha256("|".join(components).encode("utf-8")).hexdigest()

    return DeviceInfo(fingerprint=fingerprint, browser=browser, os=os_name, device_type=device_type)
