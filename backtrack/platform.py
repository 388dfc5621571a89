"""
Platform detection.

Decides which capture backend can run and how to tell the user to install
ffmpeg when it is missing.
"""

import os
import platform as platform_module
from dataclasses import dataclass
from typing import Optional

import distro as distro_lib

# Package manager install commands, keyed by distro id
INSTALL_COMMANDS = {
    "macos": "brew install {package}",
    "ubuntu": "sudo apt install {package}",
    "debian": "sudo apt install {package}",
    "linuxmint": "sudo apt install {package}",
    "pop": "sudo apt install {package}",
    "fedora": "sudo dnf install {package}",
    "rhel": "sudo dnf install {package}",
    "centos": "sudo dnf install {package}",
    "arch": "sudo pacman -S {package}",
    "manjaro": "sudo pacman -S {package}",
    "opensuse": "sudo zypper install {package}",
    "alpine": "sudo apk add {package}",
}


@dataclass
class Platform:
    """Platform information (OS, distro, version)."""
    system: str  # Linux, Darwin, Windows
    distro: str  # ubuntu, debian, macos, etc.
    version: str
    arch: str
    display: Optional[str] = None  # X11 display on Linux

    @classmethod
    def detect(cls) -> "Platform":
        """
        Detect local platform information.

        Returns:
            Platform information
        """
        system = platform_module.system()
        arch = platform_module.machine()

        distro = "unknown"
        version = ""
        display = None

        if system == "Linux":
            distro = distro_lib.id() or "unknown"
            version = distro_lib.version()
            display = os.environ.get("DISPLAY")
        elif system == "Darwin":
            distro = "macos"
            version = platform_module.mac_ver()[0]

        return cls(
            system=system,
            distro=distro,
            version=version,
            arch=arch,
            display=display,
        )

    @property
    def is_macos(self) -> bool:
        return self.system == "Darwin"

    @property
    def is_linux(self) -> bool:
        return self.system == "Linux"

    def install_hint(self, package: str) -> str:
        """
        Human readable install instruction for a package.

        Example:
            Platform.detect().install_hint("ffmpeg")
            # 'Install it with: sudo apt install ffmpeg'
        """
        template = INSTALL_COMMANDS.get(self.distro)
        if template is None:
            return f"Install {package} with your system package manager"
        return f"Install it with: {template.format(package=package)}"
