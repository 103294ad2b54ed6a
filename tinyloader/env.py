"""Print the program's arguments and, with enough of them, its environment
and auxiliary vector."""

from __future__ import annotations

import os
import struct
import sys
from os import PathLike
from typing import Iterable, Mapping, Optional, Sequence, Union

AUXV_PATH = "/proc/self/auxv"
_AUX_ENTRY = struct.Struct("@NN")


def parse_auxv(data: bytes) -> list[tuple[int, int]]:
    """Decode auxiliary vector entries up to the all-zero terminator."""
    entries = []
    for key, value in _AUX_ENTRY.iter_unpack(
        data[: len(data) - len(data) % _AUX_ENTRY.size]
    ):
        if key == 0 and value == 0:
            break
        entries.append((key, value))
    return entries


def read_auxv(path: Union[str, PathLike] = AUXV_PATH) -> list[tuple[int, int]]:
    """Read and decode an auxiliary vector file."""
    with open(path, "rb") as handle:
        return parse_auxv(handle.read())


def format_env_report(
    args: Sequence[str],
    environ: Mapping[str, str],
    auxv: Iterable[tuple[int, int]],
) -> str:
    """Return the argument count and arguments; with more than three
    arguments also the environment and auxiliary vector."""
    lines = [str(len(args)), *args]
    if len(args) > 3:
        lines += [f"{name}={value}" for name, value in environ.items()]
        lines += [
            f"{index}: {{{key:x}, {value:x}}}"
            for index, (key, value) in enumerate(auxv)
        ]
    return "\n".join(lines) + "\n"


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Command entry point."""
    args = list(sys.argv if argv is None else argv)
    auxv = read_auxv() if len(args) > 3 else []
    sys.stdout.write(format_env_report(args, os.environ, auxv))
    return 0


if __name__ == "__main__":
    sys.exit(main())