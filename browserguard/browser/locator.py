"""Locate a free remote-debugging port and a browser executable."""

import os
import shutil
import socket
import sys
from collections.abc import Iterable, Sequence
from pathlib import Path

from browserguard.core.errors import BrowserNotFoundError, NoPortAvailableError
from browserguard.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_HOST_CANDIDATES: tuple[str, ...] = ("127.0.0.1", "localhost", "::1")

# Brave first, then Chrome/Chromium.
_KNOWN_LOCATIONS: dict[str, list[str]] = {
    "win32": [
        r"C:\Program Files\BraveSoftware\Brave-Browser\Application\brave.exe",
        r"C:\Program Files (x86)\BraveSoftware\Brave-Browser\Application\brave.exe",
        r"%LOCALAPPDATA%\BraveSoftware\Brave-Browser\Application\brave.exe",
        r"C:\Program Files\Google\Chrome\Application\chrome.exe",
        r"C:\Program Files (x86)\Google\Chrome\Application\chrome.exe",
        r"%LOCALAPPDATA%\Google\Chrome\Application\chrome.exe",
    ],
    "darwin": [
        "/Applications/Brave Browser.app/Contents/MacOS/Brave Browser",
        "/Applications/Brave Browser Beta.app/Contents/MacOS/Brave Browser Beta",
        "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
        "/Applications/Chromium.app/Contents/MacOS/Chromium",
    ],
    "linux": [
        "/usr/bin/brave-browser",
        "/usr/bin/brave",
        "/snap/bin/brave",
        "/opt/brave.com/brave/brave",
        "/usr/local/bin/brave",
        "/usr/bin/google-chrome",
        "/usr/bin/google-chrome-stable",
        "/usr/bin/chromium-browser",
        "/usr/bin/chromium",
    ],
}

_PATH_NAMES = (
    "brave-browser",
    "brave",
    "google-chrome",
    "google-chrome-stable",
    "chromium",
    "chromium-browser",
)


def _family(host: str) -> socket.AddressFamily:
    return socket.AF_INET6 if ":" in host else socket.AF_INET


def is_port_available(port: int, host: str = "127.0.0.1") -> bool:
    """Check whether ``port`` can be bound on ``host``.

    Binds a throwaway listener and closes it immediately.
    """
    try:
        with socket.socket(_family(host), socket.SOCK_STREAM) as sock:
            sock.bind((host, port))
            sock.listen(1)
        return True
    except OSError:
        return False


def _usable(host: str) -> bool:
    """Whether ``host`` resolves and can bind at all (port 0)."""
    try:
        socket.getaddrinfo(host, None)
    except (OSError, UnicodeError):
        return False
    return is_port_available(0, host)


def find_available_port(
    preferred: int = 9222,
    host_candidates: Sequence[str] = DEFAULT_HOST_CANDIDATES,
    span: int = 100,
) -> int:
    """Return the first port in ``preferred .. preferred + span - 1`` that is free.

    A port is free when it binds on every candidate host usable on this
    machine (an IPv6-less host simply skips ``::1``).

    Raises:
        NoPortAvailableError: If the whole range is taken
    """
    hosts = [host for host in host_candidates if _usable(host)] or ["127.0.0.1"]
    last = preferred + span - 1

    for port in range(preferred, last + 1):
        if all(is_port_available(port, host) for host in hosts):
            if port != preferred:
                logger.info("debug_port_shifted", preferred=preferred, port=port)
            return port

    logger.error("no_debug_port_available", start=preferred, end=last, hosts=hosts)
    raise NoPortAvailableError(
        f"No free port between {preferred} and {last}",
        context={"start": preferred, "end": last, "hosts": hosts},
        suggested_action="Close other browser instances or raise DEBUG_PORT_SPAN.",
    )


def recommended_host(candidates: Iterable[str] = DEFAULT_HOST_CANDIDATES) -> str:
    """Pick the loopback host to connect to.

    127.0.0.1 is preferred because ``localhost`` may resolve to ``::1`` first
    while the browser only listens on IPv4.
    """
    for host in candidates:
        if _usable(host):
            return host
    return "127.0.0.1"


def _platform_key(platform: str) -> str:
    if platform.startswith("win"):
        return "win32"
    if platform == "darwin":
        return "darwin"
    return "linux"


def resolve_browser_executable(
    env_var: str = "BRAVE_PATH",
    platform: str | None = None,
    environ: dict[str, str] | None = None,
) -> str:
    """Resolve the browser executable path.

    Order: the ``env_var`` override, then well-known install locations for
    the platform, then a PATH lookup.

    Args:
        env_var: Environment variable holding an explicit path
        platform: ``sys.platform`` value to resolve for (defaults to current)
        environ: Environment mapping (defaults to ``os.environ``)

    Returns:
        Absolute path to an existing executable

    Raises:
        BrowserNotFoundError: If nothing was found
    """
    env = os.environ if environ is None else environ
    key = _platform_key(platform or sys.platform)

    explicit = env.get(env_var)
    if explicit:
        if Path(explicit).is_file():
            logger.debug("browser_executable_from_env", env_var=env_var, path=explicit)
            return explicit
        logger.warning("browser_env_path_missing", env_var=env_var, path=explicit)

    for candidate in _KNOWN_LOCATIONS[key]:
        path = candidate
        if key == "win32":
            for name in ("LOCALAPPDATA", "PROGRAMFILES"):
                path = path.replace(f"%{name}%", env.get(name, f"%{name}%"))
        if "%" not in path and Path(path).is_file():
            logger.debug("browser_executable_found", path=path)
            return path

    for name in _PATH_NAMES:
        found = shutil.which(name, path=env.get("PATH"))
        if found:
            logger.debug("browser_executable_on_path", path=found)
            return found

    raise BrowserNotFoundError(
        "No Brave, Chrome or Chromium executable found",
        context={"env_var": env_var, "platform": key},
        suggested_action=f"Install Brave or Chrome, or set {env_var} to the executable path.",
    )
