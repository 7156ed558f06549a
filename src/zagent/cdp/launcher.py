from __future__ import annotations

import platform
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from loguru import logger

from ..errors import SessionError


def _default_chrome() -> Optional[str]:
    system = platform.system().lower()
    candidates: List[str] = []
    if system == "darwin":
        candidates = [
            "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
            "/Applications/Google Chrome Canary.app/Contents/MacOS/Google Chrome Canary",
            "/Applications/Chromium.app/Contents/MacOS/Chromium",
        ]
    elif system == "windows":
        candidates = [
            r"C:\Program Files\Google\Chrome\Application\chrome.exe",
            r"C:\Program Files (x86)\Google\Chrome\Application\chrome.exe",
        ]
    else:
        candidates = [
            "/usr/bin/google-chrome",
            "/usr/bin/google-chrome-stable",
            "/usr/bin/chromium",
            "/usr/bin/chromium-browser",
        ]
    for p in candidates:
        if Path(p).exists():
            return p
    return None


def build_launch_cmd(executable: str, profile_dir: str, port: int) -> List[str]:
    return [
        executable,
        f"--user-data-dir={profile_dir}",
        f"--remote-debugging-port={port}",
        "--no-first-run",
        "--no-default-browser-check",
        "--disable-search-engine-choice-screen",
    ]


@dataclass(frozen=True)
class LaunchedBrowser:
    """Handle to a Chrome we spawned. We never own or terminate it."""

    pid: int
    port: int
    profile_dir: str
    command: List[str]


class ChromeLauncher:
    def __init__(self, executable_path: Optional[str] = None) -> None:
        self.executable_path = executable_path

    def resolve_executable(self) -> str:
        exe = self.executable_path or _default_chrome()
        if not exe:
            raise SessionError(
                "Chrome executable not found. Set browserExecutablePath in zendesk.config.json "
                "or ZENDESK_BROWSER_EXECUTABLE_PATH, or install Google Chrome."
            )
        return exe

    def launch(self, profile_dir: str, port: int) -> LaunchedBrowser:
        Path(profile_dir).mkdir(parents=True, exist_ok=True)
        cmd = build_launch_cmd(self.resolve_executable(), profile_dir, port)
        logger.info(f"Launching Chrome: {' '.join(shlex.quote(c) for c in cmd)}")
        # Detached so the browser outlives this invocation and can be reused
        proc = subprocess.Popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )
        return LaunchedBrowser(pid=proc.pid, port=port, profile_dir=profile_dir, command=cmd)
