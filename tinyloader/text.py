"""Small text helpers: decimal parsing, field splitting and passwd lookup."""

from __future__ import annotations

from dataclasses import dataclass
from os import PathLike
from typing import Optional, Union

READ_SIZE = 0x1000
MAX_SPLIT_ENTRIES = 100
PASSWD_FIELD_COUNT = 7


@dataclass(frozen=True)
class PasswdEntry:
    """The parts of a passwd record this package uses."""

    name: str
    shell: str


def parse_decimal(text: str) -> int:
    """Parse unsigned decimal digits; anything else yields 0."""
    if not text or not all("0" <= char <= "9" for char in text):
        return 0
    return int(text)


def split_fields(text: str, separator: str) -> list[str]:
    """Split ``text`` on ``separator``; a trailing separator ends the last field.

    Raises ValueError when the text holds too many fields.
    """
    if not text:
        return []
    fields = text.split(separator)
    if text.endswith(separator):
        fields.pop()
    if len(fields) >= MAX_SPLIT_ENTRIES:
        raise ValueError("max split entries exceeded")
    return fields


def lookup_user(passwd_text: str, uid: int) -> Optional[PasswdEntry]:
    """Find the record for ``uid`` in passwd-formatted text.

    Returns None when no record matches or a malformed line is met first.
    """
    for line in split_fields(passwd_text, "\n"):
        fields = split_fields(line, ":")
        if len(fields) < PASSWD_FIELD_COUNT:
            return None
        if parse_decimal(fields[2]) == uid:
            return PasswdEntry(name=fields[0], shell=fields[6])
    return None


def read_prefix(path: Union[str, PathLike]) -> str:
    """Return at most the first 4 KiB of a file as text, up to any NUL byte."""
    with open(path, "rb") as handle:
        data = handle.read(READ_SIZE)
    return data.split(b"\0", 1)[0].decode("utf-8", errors="replace")