"""Helpers for laying out a PE image in memory: section regions, runtime
import address tables and the trampolines that route imported calls."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence

from tinyloader.pe_tools import (
    SYMBOL_CLASS_EXTERNAL,
    SYMBOL_TYPE_FUNCTION,
    ExportEntry,
    ImportAddressEntry,
    PeData,
    SectionHeader,
    Symbol,
)

REGION_ALIGN = 0x1000
MAX_TRAMPOLINE_IAT_SIZE = 0x1000
DYNAMIC_CALLBACK_TRAMPOLINE_SIZE = 7
IAT_ENTRY_SIZE = 8
UINT32_MAX = 0xFFFFFFFF

NTDLL_NAME = "ntdll.dll"

_ASM_MOV32_IMMEDIATE_INTO_EAX = b"\xb8"
_ASM_CALL_EAX = b"\xff\xd0"

PERMISSION_READ = 4
PERMISSION_WRITE = 2
PERMISSION_EXECUTE = 1


class LoaderError(RuntimeError):
    """Raised when an image cannot be laid out for loading."""


@dataclass(frozen=True)
class MemoryRegion:
    """A span of memory to map, with rights as read=4, write=2, execute=1."""

    start: int
    end: int
    is_direct_file_map: bool = False
    file_offset: int = 0
    file_size: int = 0
    permissions: int = 0

    @property
    def size(self) -> int:
        return self.end - self.start


@dataclass
class RuntimeObject:
    """A PE image as placed in the running process."""

    name: str
    pe_data: PeData
    memory_regions: tuple[MemoryRegion, ...] = ()
    function_exports: tuple[ExportEntry, ...] = field(default_factory=tuple)
    runtime_iat_section_base: int = 0


@dataclass(frozen=True)
class RuntimeImportEntry:
    """An import address table slot resolved to its runtime address."""

    key: int
    value: int
    lib_name: Optional[str]
    import_name: Optional[str]
    is_variable: bool = False


def _align_up(value: int, alignment: int) -> int:
    return (value + alignment - 1) // alignment * alignment


def memory_regions_for_sections(
    section_headers: Iterable[SectionHeader], address_offset: int
) -> list[MemoryRegion]:
    """Return one page-aligned region per section, placed at ``address_offset``."""
    regions = []
    for header in section_headers:
        start = address_offset + header.virtual_base_address
        regions.append(
            MemoryRegion(
                start=start,
                end=start + _align_up(header.virtual_size, REGION_ALIGN),
                is_direct_file_map=False,
                file_offset=header.file_offset,
                file_size=header.virtual_size,
                permissions=header.permissions(),
            )
        )
    return regions


def find_runtime_object(
    runtime_objects: Iterable[RuntimeObject], name: Optional[str]
) -> Optional[RuntimeObject]:
    """Return the first runtime object called ``name``, or None."""
    return next((obj for obj in runtime_objects if obj.name == name), None)


def find_symbol(symbols: Iterable[Symbol], name: Optional[str]) -> Optional[Symbol]:
    """Return the first symbol called ``name``, or None."""
    return next((symbol for symbol in symbols if symbol.name == name), None)


def _resolve_import(
    entry: ImportAddressEntry,
    shared_libraries: Sequence[RuntimeObject],
    runtime_iat_region_base: int,
) -> tuple[int, bool]:
    library = find_runtime_object(shared_libraries, entry.lib_name)
    if library is None and entry.lib_name != NTDLL_NAME:
        raise LoaderError(f"expected runtime object '{entry.lib_name}'")

    value = runtime_iat_region_base + entry.value
    if library is None:
        return value, False

    symbol = find_symbol(library.pe_data.symbols, entry.import_name)
    if symbol is None:
        return value, False

    is_variable = (
        symbol.type != SYMBOL_TYPE_FUNCTION
        and symbol.storage_class == SYMBOL_CLASS_EXTERNAL
    )
    if not is_variable:
        return value, False

    if symbol.value < 0:
        raise LoaderError(f"unexpected negative symbol value for {symbol.name}")
    sections = library.pe_data.section_headers
    if not 0 <= symbol.section_index < len(sections):
        raise LoaderError(f"symbol {symbol.name} has no section")
    section = sections[symbol.section_index]
    return (
        library.pe_data.image_base + section.virtual_base_address + symbol.value,
        True,
    )


def runtime_import_address_table(
    import_address_table: Iterable[ImportAddressEntry],
    shared_libraries: Sequence[RuntimeObject],
    iat_image_base: int,
    runtime_iat_region_base: int,
) -> list[RuntimeImportEntry]:
    """Resolve every IAT slot to the address it will hold at run time.

    Function imports point into the trampoline region; variables exported
    by a loaded library point straight at the variable's location.
    """
    table = []
    for entry in import_address_table:
        key = iat_image_base + entry.key
        if entry.value == 0:
            value, is_variable = 0, False
        else:
            value, is_variable = _resolve_import(
                entry, shared_libraries, runtime_iat_region_base
            )
        table.append(
            RuntimeImportEntry(
                key=key,
                value=value,
                lib_name=entry.lib_name,
                import_name=entry.import_name,
                is_variable=is_variable,
            )
        )
    return table


def trampoline_code(callback_address: int) -> bytes:
    """Machine code that loads ``callback_address`` into eax and calls it."""
    if not 0 <= callback_address <= UINT32_MAX:
        raise LoaderError("dynamic callback location exceeds 32 bits")
    return (
        _ASM_MOV32_IMMEDIATE_INTO_EAX
        + struct.pack("<I", callback_address)
        + _ASM_CALL_EAX
    )


def plan_import_address_table(
    import_address_table: Sequence[RuntimeImportEntry],
    dynamic_callback: int,
    iat_section_base: int,
) -> tuple[Optional[MemoryRegion], list[tuple[int, bytes]]]:
    """Work out the trampoline region and the writes that fill the IAT.

    Returns the region to map (None when the table is empty) and, in order,
    the ``(address, bytes)`` writes: each slot's 64-bit pointer, followed by
    the trampoline for every function import.
    """
    code = trampoline_code(dynamic_callback)
    if not import_address_table:
        return None, []
    if len(import_address_table) * IAT_ENTRY_SIZE > MAX_TRAMPOLINE_IAT_SIZE:
        raise LoaderError(
            f"import address table length must be <= "
            f"{MAX_TRAMPOLINE_IAT_SIZE // IAT_ENTRY_SIZE}"
        )

    region = MemoryRegion(
        start=iat_section_base,
        end=iat_section_base + MAX_TRAMPOLINE_IAT_SIZE,
        is_direct_file_map=False,
        file_offset=0,
        file_size=0,
        permissions=PERMISSION_READ | PERMISSION_WRITE | PERMISSION_EXECUTE,
    )

    writes: list[tuple[int, bytes]] = []
    for entry in import_address_table:
        if entry.value == 0:
            continue
        writes.append((entry.key, struct.pack("<Q", entry.value)))
        if not entry.is_variable:
            writes.append((entry.value, code))
    return region, writes