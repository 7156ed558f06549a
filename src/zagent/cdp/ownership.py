"""Decide whether a CDP port belongs to the Chrome launched with our profile."""

from __future__ import annotations

import os
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Union

import psutil
from loguru import logger

from .endpoint import parse_port


_USER_DATA_DIR = re.compile(r"""--user-data-dir=(?:"([^"]+)"|'([^']+)'|(\S+))""")

CommandLine = Union[str, Sequence[str], None]


@dataclass(frozen=True)
class OwnershipClaim:
    port: Optional[int]
    listening_pid: Optional[int]
    actual_profile_dir: Optional[str]
    expected_profile_dir: Optional[str]
    matches: bool
    command: Optional[str] = None


def extract_user_data_dir(command: CommandLine) -> str:
    if not command:
        return ""
    if not isinstance(command, str):
        # argv form keeps paths with spaces intact
        for arg in command:
            if arg and arg.startswith("--user-data-dir="):
                return arg.split("=", 1)[1].strip("\"'")
        command = " ".join(command)
    m = _USER_DATA_DIR.search(command)
    if not m:
        return ""
    return m.group(1) or m.group(2) or m.group(3) or ""


def canonical_path(raw: Optional[str]) -> str:
    text = str(raw or "").strip()
    if not text:
        return ""
    p = Path(text).expanduser()
    try:
        return str(p.resolve(strict=True))
    except (OSError, RuntimeError):
        # Not created yet: compare on the normalized absolute form
        return os.path.abspath(str(p))


def ownership_from_command(
    command: CommandLine,
    expected_profile_dir: Optional[str],
    *,
    pid: Optional[int] = None,
    port: Optional[int] = None,
) -> OwnershipClaim:
    actual_raw = extract_user_data_dir(command)
    expected = canonical_path(expected_profile_dir)
    actual = canonical_path(actual_raw)
    text = command if isinstance(command, str) or command is None else " ".join(command)
    return OwnershipClaim(
        port=port,
        listening_pid=pid,
        actual_profile_dir=actual_raw or None,
        expected_profile_dir=expected_profile_dir or None,
        matches=bool(expected and actual and expected == actual),
        command=text or None,
    )


def _lsof_listener_pid(port: int) -> Optional[int]:
    try:
        out = subprocess.run(
            ["lsof", "-n", "-P", f"-iTCP:{port}", "-sTCP:LISTEN", "-t"],
            capture_output=True,
            text=True,
            check=False,
            timeout=5,
        ).stdout
    except (OSError, subprocess.SubprocessError):
        return None
    for line in out.splitlines():
        if line.strip().isdigit():
            return int(line.strip())
    return None


def listener_pid(port: int) -> Optional[int]:
    try:
        conns = psutil.net_connections(kind="tcp")
    except psutil.AccessDenied:
        # macOS requires root for a system-wide socket table
        return _lsof_listener_pid(port)
    seen_listener = False
    for c in conns:
        if c.status != psutil.CONN_LISTEN or not c.laddr or c.laddr.port != port:
            continue
        if c.pid:
            return c.pid
        seen_listener = True
    return _lsof_listener_pid(port) if seen_listener else None


def process_command(pid: Optional[int]) -> List[str]:
    if not pid:
        return []
    try:
        return psutil.Process(pid).cmdline()
    except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess) as e:
        logger.debug(f"Cannot read command line of pid={pid}: {e}")
        return []


class OwnershipArbiter:
    def check(self, cdp_url: str, expected_profile_dir: str) -> OwnershipClaim:
        port = parse_port(cdp_url)
        pid = listener_pid(port)
        claim = ownership_from_command(process_command(pid), expected_profile_dir, pid=pid, port=port)
        logger.debug(
            f"Ownership port={port} pid={pid} actual={claim.actual_profile_dir} matches={claim.matches}"
        )
        return claim
