"""Remote host identification used to tailor generated commands."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Dict, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

_DISTRO_NAMES = (
    ("raspbian", "Raspbian"),
    ("ubuntu", "Ubuntu"),
    ("debian", "Debian"),
    ("centos", "CentOS"),
    ("fedora", "Fedora"),
    ("arch", "Arch Linux"),
    ("rhel", "Red Hat Enterprise Linux"),
    ("alpine", "Alpine Linux"),
)

_SHELL_PROBE = 'if [ -n "$BASH_VERSION" ]; then echo bash; elif [ -n "$ZSH_VERSION" ]; then echo zsh; else echo "$SHELL"; fi'


class OSInfo(BaseModel):
    type: str = "unknown"
    distribution: Optional[str] = None
    version: Optional[str] = None
    codename: Optional[str] = None
    kernel: Optional[str] = None
    architecture: str = "unknown"
    hostname: Optional[str] = None
    shell: Optional[str] = None
    extra: Dict[str, str] = Field(default_factory=dict)

    def summary(self) -> str:
        """One-paragraph description for the system prompt."""
        parts = [f"OS: {self.distribution or self.type}"]
        if self.version:
            parts.append(f"version {self.version}")
        if self.codename:
            parts.append(f"({self.codename})")
        parts.append(f"arch {self.architecture}")
        if self.kernel:
            parts.append(f"kernel {self.kernel}")
        if self.hostname:
            parts.append(f"host {self.hostname}")
        if self.shell:
            parts.append(f"shell {self.shell}")
        return ", ".join(parts)


def parse_os_release(text: str) -> Dict[str, str]:
    result: Dict[str, str] = {}
    for line in text.splitlines():
        key, sep, value = line.partition("=")
        if not sep or not key.strip():
            continue
        result[key.strip()] = value.strip().strip('"').strip("'")
    return result


class OSDetector:
    """Probe the host through a ``run(command) -> (output, exit_code)`` callable.

    A probe that exits non-zero leaves its field unset. Connection loss raised
    by ``run`` propagates.
    """

    def __init__(self, run: Callable[[str], Awaitable[tuple[str, int]]]) -> None:
        self._run = run

    async def _probe(self, command: str) -> Optional[str]:
        output, exit_code = await self._run(command)
        if exit_code != 0:
            return None
        return output.strip() or None

    async def detect(self) -> OSInfo:
        kind = (await self._probe("uname -s") or "").lower()
        if "linux" in kind:
            info = await self._detect_linux()
        elif "darwin" in kind:
            info = await self._detect_macos()
        elif any(k in kind for k in ("mingw", "cygwin", "msys")):
            info = OSInfo(type="windows", distribution="Windows")
        else:
            info = OSInfo()
        info.shell = await self._probe(_SHELL_PROBE)
        logger.info("Detected remote OS: %s", info.summary())
        return info

    async def _detect_linux(self) -> OSInfo:
        info = OSInfo(type="linux")
        info.architecture = await self._probe("uname -m") or "unknown"
        info.kernel = await self._probe("uname -r")
        info.hostname = await self._probe("hostname")

        release_text = await self._probe("cat /etc/os-release")
        if release_text:
            release = parse_os_release(release_text)
            info.distribution = release.get("NAME") or release.get("ID")
            info.version = release.get("VERSION_ID")
            info.codename = release.get("VERSION_CODENAME")
            distro_id = release.get("ID", "").lower()
            id_like = release.get("ID_LIKE", "").lower()
            for needle, name in _DISTRO_NAMES:
                if needle in distro_id or (needle == "raspbian" and needle in id_like):
                    info.distribution = name
                    break
        else:
            lsb = await self._probe("lsb_release -a 2>/dev/null")
            for line in (lsb or "").splitlines():
                key, _, value = line.partition(":")
                if key == "Distributor ID":
                    info.distribution = value.strip()
                elif key == "Release":
                    info.version = value.strip()
                elif key == "Codename":
                    info.codename = value.strip()
        return info

    async def _detect_macos(self) -> OSInfo:
        info = OSInfo(type="darwin", distribution="macOS")
        info.version = await self._probe("sw_vers -productVersion")
        info.architecture = await self._probe("uname -m") or "unknown"
        info.kernel = await self._probe("uname -r")
        info.hostname = await self._probe("hostname")
        return info
