"""Print a human readable summary of a PE image: headers, sections, imports,
exports, relocations and, optionally, symbols."""

from __future__ import annotations

import sys
from typing import Optional, Sequence

from tinyloader.pe_tools import (
    IMAGE_REL_BASED_ABSOLUTE,
    IMAGE_REL_BASED_DIR64,
    PE32_MAGIC,
    SECTION_HEADER_SIZE,
    SYMBOL_CLASS_EXTERNAL,
    SYMBOL_CLASS_STATIC,
    SYMBOL_TYPE_FUNCTION,
    PeData,
    PeFormatError,
    parse_pe,
)

USAGE = "Usage: readwin <file> [-s]"

_RELOCATION_TYPE_NAMES = {
    IMAGE_REL_BASED_ABSOLUTE: "IMAGE_REL_BASED_ABSOLUTE",
    IMAGE_REL_BASED_DIR64: "IMAGE_REL_BASED_DIR64",
}
_STORAGE_CLASS_NAMES = {
    SYMBOL_CLASS_EXTERNAL: "EXTERNAL",
    SYMBOL_CLASS_STATIC: "STATIC",
}


def _text(value: Optional[str]) -> str:
    return "(null)" if value is None else value


def _section_flags(characteristics: int) -> str:
    flags = characteristics >> 28
    return (
        ("r" if flags & 4 else "-")
        + ("w" if flags & 8 else "-")
        + ("e" if flags & 2 else "-")
        + ("s" if flags & 1 else "p")
    )


def format_report(pe_data: PeData, filename: str, show_symbols: bool = False) -> str:
    """Return the full text report for ``pe_data``."""
    dos_magic = pe_data.dos_magic.to_bytes(2, "little").decode("latin-1")
    pe_class = "PE32" if pe_data.magic == PE32_MAGIC else "PE32+"
    sections = pe_data.section_headers

    lines = [
        f"File: {filename}",
        "",
        "PE Header:",
        f"DOS magic: {dos_magic}",
        f"PE magic: 0x{pe_data.magic:x}",
        f"Class: {pe_class}",
        f"Base of code: 0x{pe_data.base_of_code:x}",
        f"Image base: 0x{pe_data.image_base:x}",
        f"Entry: 0x{pe_data.entrypoint:x}",
        f"Section headers start: 0x{pe_data.section_headers_start:x}",
        f"Section headers length: {len(sections)}",
        f"Section header size: {SECTION_HEADER_SIZE}",
        f"Symbol table offset: 0x{pe_data.pointer_to_symbol_table:x}",
        f"Symbol length: {pe_data.number_of_symbols}",
        "",
        f"Section Headers ({len(sections)}):",
    ]
    for index, section in enumerate(sections):
        lines.append(
            f"{index}, {section.name}, 0x{section.virtual_size:x}, "
            f"0x{section.virtual_base_address:x}, 0x{section.file_offset:x}, "
            f"{_section_flags(section.characteristics)}"
        )

    import_section_name = (
        pe_data.import_section.name if pe_data.import_section else "N/A"
    )
    lines += ["", f"Imports ({len(pe_data.import_dir_entries)}) ({import_section_name}):"]
    for dir_entry in pe_data.import_dir_entries:
        lines.append(f"{dir_entry.lib_name} ({len(dir_entry.import_entries)}):")
        for index, entry in enumerate(dir_entry.import_entries):
            lines.append(f"{index}: 0x{entry.address:x}, {entry.name}")

    lines += ["", f"Import Address Table ({len(pe_data.import_address_table)}):"]
    for index, entry in enumerate(pe_data.import_address_table):
        lines.append(
            f"{index}: 0x{entry.key:x}:0x{entry.value:x} {_text(entry.import_name)}"
        )

    export_section_name = pe_data.export_section_name or "N/A"
    lines += ["", f"Exports ({len(pe_data.export_entries)}) ({export_section_name}):"]
    for index, entry in enumerate(pe_data.export_entries):
        lines.append(f"{index}: 0x{entry.address:x}: {entry.name}")

    lines += ["", f"Relocations ({len(pe_data.relocations)}):"]
    for index, relocation in enumerate(pe_data.relocations):
        type_name = _RELOCATION_TYPE_NAMES.get(relocation.type, "UNKNOWN")
        lines.append(f"{index}: 0x{relocation.address:x}, {type_name}")

    lines += ["", f"Symbols ({len(pe_data.symbols)}):"]
    if show_symbols:
        for symbol in pe_data.symbols:
            section_start = 0
            if 0 <= symbol.section_index < len(sections):
                section_start = sections[symbol.section_index].virtual_base_address
            symbol_type = "FUNCTION" if symbol.type == SYMBOL_TYPE_FUNCTION else "-"
            symbol_class = _STORAGE_CLASS_NAMES.get(symbol.storage_class, "-")
            lines.append(
                f"{symbol.raw_index}: 0x{section_start:x}: "
                f"0x{symbol.value & 0xFFFFFFFF:x} {symbol.name}, "
                f"{symbol_type} {symbol_class}"
            )

    return "\n".join(lines) + "\n"


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Command entry point: ``readwin <file> [-s]``."""
    args = list(sys.argv if argv is None else argv)
    if len(args) < 2 or args[1].startswith("--"):
        print(USAGE, file=sys.stderr)
        return 1

    filename = args[1]
    try:
        with open(filename, "rb") as handle:
            data = handle.read()
    except OSError as exc:
        print(
            f"File err '{exc.strerror}({exc.errno})' for '{filename}'",
            file=sys.stderr,
        )
        return 1

    show_symbols = len(args) >= 3 and args[2] == "-s"
    try:
        pe_data = parse_pe(data)
    except PeFormatError:
        print("Failed getting PE data", file=sys.stderr)
        return 1

    sys.stdout.write(format_report(pe_data, filename, show_symbols))
    return 0


if __name__ == "__main__":
    sys.exit(main())