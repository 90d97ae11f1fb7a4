"""User-Agent parsing for tracked sessions.

Best-effort only: anything unrecognised comes back as ``"Unknown"``.
"""
import logging
import re
from typing import Dict, Optional, Tuple

logger = logging.getLogger(__name__)

_API_CLIENTS = (
    ("yaak", "Yaak API Client"),
    ("postman", "Postman"),
    ("insomnia", "Insomnia"),
    ("httpie", "HTTPie"),
    ("curl", "cURL"),
    ("wget", "wget"),
    ("python-httpx", "HTTPX"),
)

# Order matters: Chromium derivatives before Chrome, Chrome before Safari
_BROWSERS = (
    ("Edge", ("edg/", "edge/"), re.compile(r"(?:edg|edge)/([0-9.]+)"), ()),
    ("Opera", ("opr/", "opera/"), re.compile(r"(?:opr|opera)/([0-9.]+)"), ()),
    ("Firefox", ("firefox/",), re.compile(r"firefox/([0-9.]+)"), ()),
    ("Chrome", ("chrome/",), re.compile(r"chrome/([0-9.]+)"), ("edge",)),
    ("Safari", ("safari/",), re.compile(r"version/([0-9.]+)"), ("chrome",)),
    ("Internet Explorer", ("msie", "trident"), re.compile(r"(?:msie\s|rv:)([0-9.]+)"), ()),
)

_WINDOWS_VERSIONS = {
    "10.0": "Windows 10/11",
    "6.3": "Windows 8.1",
    "6.2": "Windows 8",
    "6.1": "Windows 7",
    "6.0": "Windows Vista",
}

_LINUX_DISTROS = (("ubuntu", "Ubuntu Linux"), ("fedora", "Fedora Linux"), ("debian", "Debian Linux"))


def _unknown() -> Dict[str, str]:
    return {"device_type": "unknown", "browser": "Unknown", "os": "Unknown", "version": ""}


def parse_user_agent(user_agent: Optional[str]) -> Dict[str, str]:
    """Return ``device_type``, ``browser``, ``os`` and ``version`` for a UA string."""
    if not user_agent or not user_agent.strip():
        return _unknown()

    ua = user_agent.lower()

    for needle, name in _API_CLIENTS:
        if needle in ua:
            return {"device_type": "api_client", "browser": name, "os": "Unknown", "version": ""}

    device_type = _detect_device_type(ua)
    browser, version = _detect_browser(ua)
    return {
        "device_type": device_type,
        "browser": f"{browser} {version}" if version else browser,
        "os": _detect_os(ua),
        "version": version,
    }


def _detect_device_type(ua: str) -> str:
    if "mobile" in ua or "android" in ua or "iphone" in ua:
        return "mobile"
    if "tablet" in ua or "ipad" in ua:
        return "tablet"
    if any(marker in ua for marker in ("mozilla", "webkit", "chrome", "safari", "firefox")):
        return "desktop"
    return "unknown"


def _detect_browser(ua: str) -> Tuple[str, str]:
    for name, needles, version_re, excludes in _BROWSERS:
        if any(n in ua for n in needles) and not any(e in ua for e in excludes):
            match = version_re.search(ua)
            return name, match.group(1) if match else ""
    return "Unknown", ""


def _detect_os(ua: str) -> str:
    if "windows nt" in ua:
        match = re.search(r"windows nt ([0-9.]+)", ua)
        if not match:
            return "Windows"
        return _WINDOWS_VERSIONS.get(match.group(1), f"Windows NT {match.group(1)}")

    if "android" in ua:
        match = re.search(r"android ([0-9.]+)", ua)
        return f"Android {match.group(1)}" if match else "Android"

    for marker, label in (("iphone", "iOS"), ("ipad", "iPadOS")):
        if marker in ua:
            match = re.search(r"os ([0-9_]+)", ua)
            return f"{label} {match.group(1).replace('_', '.')}" if match else label

    if "mac os x" in ua:
        match = re.search(r"mac os x ([0-9_]+)", ua)
        return f"macOS {match.group(1).replace('_', '.')}" if match else "macOS"

    if "linux" in ua:
        for needle, name in _LINUX_DISTROS:
            if needle in ua:
                return name
        return "Linux"

    if "cros" in ua:
        return "Chrome OS"

    return "Unknown"
