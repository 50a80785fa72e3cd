# tests/unit/services/test_device_fingerprint.py
from authguard.services.device_fingerprint import detect_device_type, extract_device_fingerprint

CHROME_WINDOWS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
EDGE_WINDOWS = CHROME_WINDOWS + " Edg/120.0.2210.91"
SAFARI_IPHONE = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)
FIREFOX_LINUX = "Mozilla/5.0 (X11; Ubuntu; Linux x86_64; rv:121.0) Gecko/20100101 Firefox/121.0"
ANDROID_TABLET = (
    "Mozilla/5.0 (Linux; Android 13; SM-X700) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0 Safari/537.36"
)


def test_fingerprint_is_deterministic():
    first = extract_device_fingerprint(CHROME_WINDOWS, "en-US", "gzip")
    second = extract_device_fingerprint(CHROME_WINDOWS, "en-US", "gzip")
    assert first == second
    assert len(first.fingerprint) == 64


def test_fingerprint_changes_with_headers():
    base = extract_device_fingerprint(CHROME_WINDOWS, "en-US", "gzip")
    assert extract_device_fingerprint(CHROME_WINDOWS, "de-DE", "gzip").fingerprint != base.fingerprint
    assert extract_device_fingerprint(CHROME_WINDOWS, "en-US", "br").fingerprint != base.fingerprint


def test_browser_and_os_detection():
    chrome = extract_device_fingerprint(CHROME_WINDOWS, None, None)
    assert (chrome.browser, chrome.os, chrome.device_type) == ("Chrome", "Windows", "desktop")

    edge = extract_device_fingerprint(EDGE_WINDOWS, None, None)
    assert edge.browser == "Edge"

    iphone = extract_device_fingerprint(SAFARI_IPHONE, None, None)
    assert (iphone.browser, iphone.os, iphone.device_type) == ("Safari", "iOS", "mobile")

    firefox = extract_device_fingerprint(FIREFOX_LINUX, None, None)
    assert (firefox.browser, firefox.os) == ("Firefox", "Ubuntu")


def test_device_type_classification():
    assert detect_device_type(ANDROID_TABLET) == "tablet"
    assert detect_device_type("Mozilla/5.0 (iPad; CPU OS 17_0 like Mac OS X)") == "tablet"
    assert detect_device_type("") == "desktop"


def test_missing_headers_hash_like_empty_strings():
    assert (
        extract_device_fingerprint(None, None, None).fingerprint
        == extract_device_fingerprint("", "", "").fingerprint
    )
    unknown = extract_device_fingerprint(None, None, None)
    assert unknown.browser is None
    assert unknown.os is None
