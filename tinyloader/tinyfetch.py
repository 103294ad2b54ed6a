"""Show a short summary of the running system: user, host, OS, kernel,
uptime and shell."""

from __future__ import annotations

import os
import sys
from typing import Optional, Sequence

from tinyloader.text import lookup_user, parse_decimal, read_prefix

PRETTY_NAME_KEY = "PRETTY_NAME"


def os_pretty_name(os_release: str) -> str:
    """Return the quoted PRETTY_NAME value from os-release text."""
    key_at = os_release.find(PRETTY_NAME_KEY)
    if key_at < 0:
        raise ValueError("PRETTY_NAME not found")
    start = key_at + len(PRETTY_NAME_KEY) + 2
    end = os_release.find('"', start)
    if end < 0:
        raise ValueError("unterminated PRETTY_NAME value")
    return os_release[start:end]


def format_uptime(uptime_text: str) -> str:
    """Render /proc/uptime contents as days, hours and minutes."""
    whole = uptime_text.split()[0] if uptime_text.split() else ""
    total_seconds = float(parse_decimal(whole.split(".", 1)[0]))
    days = total_seconds / 60 / 60 / 24
    hours = (days - int(days)) * 24
    minutes = (hours - int(hours)) * 60
    return f"{int(days)} days, {int(hours)} hours, {int(minutes)} minutes"


def _fail(message: str) -> int:
    print(message, file=sys.stderr)
    return 1


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Command entry point: ``tinyfetch [--extra]``."""
    args = list(sys.argv if argv is None else argv)
    if len(args) > 1 and args[1] == "--extra":
        print(f"PID: {os.getpid()}")
        print(f"CWD: {os.getcwd()}")
        try:
            maps = read_prefix("/proc/self/maps")
        except OSError:
            return _fail("read failed")
        print(f"Mapped address regions:\n{maps}")

    system_name = os.uname()
    try:
        user = lookup_user(read_prefix("/etc/passwd"), os.getuid())
    except (OSError, ValueError):
        user = None
    if user is None:
        return _fail("getpwuid failed")
    print(f"{user.name}@{system_name.nodename}")
    print("--------------")

    try:
        pretty_name = os_pretty_name(read_prefix("/etc/os-release"))
        uptime = format_uptime(read_prefix("/proc/uptime"))
    except (OSError, ValueError):
        return _fail("read failed")

    print(f"OS: {pretty_name} {system_name.machine}")
    print(f"Kernel: {system_name.release}")
    print(f"Uptime: {uptime}")
    print(f"Shell: {user.shell}")
    return 0


if __name__ == "__main__":
    sys.exit(main())