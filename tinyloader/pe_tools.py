"""Parsing of Windows PE/COFF images: headers, sections, imports, exports,
symbols and base relocations."""

from __future__ import annotations

import itertools
import struct
from dataclasses import dataclass
from os import PathLike
from pathlib import Path
from typing import Optional, Union

DOS_MAGIC = 0x5A4D
PE32_MAGIC = 0x10B
PE32_PLUS_MAGIC = 0x20B

DOS_HEADER_LFANEW_OFFSET = 0x3C
PE_SIGNATURE_SIZE = 4
FILE_HEADER_SIZE = 20
WIN_OPTIONAL_HEADER_START = PE_SIGNATURE_SIZE + FILE_HEADER_SIZE
SECTION_HEADER_SIZE = 40
SYMBOL_SIZE = 18
IMPORT_DIRECTORY_ENTRY_SIZE = 20
DATA_DIRECTORY_COUNT = 16

DATA_DIR_EXPORT_INDEX = 0
DATA_DIR_IMPORT_INDEX = 1
DATA_DIR_RELOC_INDEX = 5
DATA_DIR_IAT_INDEX = 12

SYMBOL_TYPE_FUNCTION = 0x20
SYMBOL_CLASS_EXTERNAL = 0x02
SYMBOL_CLASS_STATIC = 0x03

IMAGE_REL_BASED_ABSOLUTE = 0x00
IMAGE_REL_BASED_DIR64 = 0x0A

MAX_TABLE_LENGTH = 1000

ORDINAL_IMPORT_NAME = "<ordinal>"
UNKNOWN_EXPORT_NAME = "<unknown>"

_RELOCATION_BLOCK_HEADER_SIZE = 8
_IMPORT_NAME_HINT_SIZE = 2


class PeFormatError(ValueError):
    """Raised when the data is not a PE image this parser understands."""


@dataclass(frozen=True)
class _OptionalLayout:
    image_base_format: str
    image_base_offset: int
    rva_count_offset: int
    size: int
    word_size: int


_LAYOUTS = {
    PE32_PLUS_MAGIC: _OptionalLayout("<Q", 24, 108, 240, 8),
    PE32_MAGIC: _OptionalLayout("<I", 28, 92, 224, 4),
}


@dataclass(frozen=True)
class SectionHeader:
    """One entry of the section table."""

    name: str
    virtual_size: int = 0
    virtual_base_address: int = 0
    file_size: int = 0
    file_offset: int = 0
    characteristics: int = 0

    def permissions(self) -> int:
        """Return the section's access rights as read=4, write=2, execute=1."""
        flags = self.characteristics >> 28
        read = 4 if flags & 4 else 0
        write = 2 if flags & 8 else 0
        execute = 1 if flags & 2 else 0
        return read | write | execute


@dataclass(frozen=True)
class ImportEntry:
    name: str
    address: int


@dataclass(frozen=True)
class ImportDirectoryEntry:
    lib_name: str
    import_lookup_table_offset: int
    import_entries: tuple[ImportEntry, ...]


@dataclass(frozen=True)
class ImportAddressEntry:
    key: int
    value: int
    lib_name: Optional[str]
    import_name: Optional[str]


@dataclass(frozen=True)
class ExportEntry:
    address: int
    name: str


@dataclass(frozen=True)
class Symbol:
    name: str
    value: int
    section_index: int
    type: int
    storage_class: int
    auxiliary_symbols_len: int
    raw_index: int


@dataclass(frozen=True)
class RelocationEntry:
    offset: int
    type: int
    block_page_rva: int

    @property
    def address(self) -> int:
        """Relative virtual address the relocation applies to."""
        return self.block_page_rva + self.offset


@dataclass(frozen=True)
class PeData:
    """Everything extracted from a PE image."""

    dos_magic: int
    image_file_header_start: int
    machine: int
    pointer_to_symbol_table: int
    number_of_symbols: int
    magic: int
    address_of_entry_point: int
    base_of_code: int
    image_base: int
    image_size: int
    headers_size: int
    data_directories: tuple[tuple[int, int], ...]
    entrypoint: int
    section_headers: tuple[SectionHeader, ...]
    import_section: Optional[SectionHeader]
    import_dir_entries: tuple[ImportDirectoryEntry, ...]
    import_address_table: tuple[ImportAddressEntry, ...]
    export_section_name: Optional[str]
    export_entries: tuple[ExportEntry, ...]
    symbols: tuple[Symbol, ...]
    relocations: tuple[RelocationEntry, ...]

    @property
    def is_64_bit(self) -> bool:
        return self.magic == PE32_PLUS_MAGIC

    @property
    def word_size(self) -> int:
        return 8 if self.is_64_bit else 4

    @property
    def optional_header_size(self) -> int:
        return _LAYOUTS[self.magic].size

    @property
    def section_headers_start(self) -> int:
        return (
            self.image_file_header_start
            + WIN_OPTIONAL_HEADER_START
            + self.optional_header_size
        )


def _unpack(fmt: str, buffer: bytes, offset: int) -> tuple:
    if offset < 0:
        raise PeFormatError(f"offset {offset:#x} lies before the buffer")
    try:
        return struct.unpack_from(fmt, buffer, offset)
    except struct.error as exc:
        raise PeFormatError(f"data truncated at offset {offset:#x}") from exc


def _cstring(buffer: bytes, offset: int) -> str:
    if offset < 0 or offset > len(buffer):
        raise PeFormatError(f"string offset {offset:#x} out of range")
    end = buffer.find(b"\0", offset)
    if end < 0:
        end = len(buffer)
    return buffer[offset:end].decode("latin-1")


def _section_data(data: bytes, section: SectionHeader) -> bytes:
    return data[section.file_offset : section.file_offset + section.file_size]


def _section_containing(
    sections: tuple[SectionHeader, ...], rva: int
) -> Optional[SectionHeader]:
    return next(
        (s for s in reversed(sections) if rva >= s.virtual_base_address), None
    )


def _parse_section_headers(data: bytes, start: int, count: int):
    headers = []
    for index in range(count):
        (
            raw_name,
            virtual_size,
            virtual_base_address,
            file_size,
            file_offset,
            _relocations,
            _line_numbers,
            _relocations_len,
            _line_numbers_len,
            characteristics,
        ) = _unpack("<8sIIIIIIHHI", data, start + index * SECTION_HEADER_SIZE)
        headers.append(
            SectionHeader(
                name=raw_name.split(b"\0", 1)[0].decode("latin-1"),
                virtual_size=virtual_size,
                virtual_base_address=virtual_base_address,
                file_size=file_size,
                file_offset=file_offset,
                characteristics=characteristics,
            )
        )
    return tuple(headers)


def _parse_import_entries(
    buffer: bytes, base: int, lookup_rva: int, address_rva: int, word_size: int
) -> tuple[ImportEntry, ...]:
    word_format = "<Q" if word_size == 8 else "<I"
    ordinal_flag = 1 << (word_size * 8 - 1)
    entries = []
    for index in itertools.count():
        if index == MAX_TABLE_LENGTH:
            raise PeFormatError("unsupported import lookup table size")
        (lookup,) = _unpack(
            word_format, buffer, lookup_rva - base + index * word_size
        )
        if lookup == 0:
            break
        (address,) = _unpack(
            word_format, buffer, address_rva - base + index * word_size
        )
        if lookup & ordinal_flag:
            name = ORDINAL_IMPORT_NAME
        else:
            name_offset = (lookup & (ordinal_flag - 1)) - base
            name = _cstring(buffer, name_offset + _IMPORT_NAME_HINT_SIZE)
        entries.append(ImportEntry(name=name, address=address))
    return tuple(entries)


def _parse_import_directory(
    buffer: bytes, base: int, directory_rva: int, word_size: int
) -> tuple[ImportDirectoryEntry, ...]:
    start = directory_rva - base
    entries = []
    for index in itertools.count():
        if index == MAX_TABLE_LENGTH:
            raise PeFormatError("unsupported .idata table size")
        fields = _unpack(
            "<5I", buffer, start + index * IMPORT_DIRECTORY_ENTRY_SIZE
        )
        if not any(fields):
            break
        lookup_rva, _timestamp, _forwarder, name_rva, address_rva = fields
        entries.append(
            ImportDirectoryEntry(
                lib_name=_cstring(buffer, name_rva - base),
                import_lookup_table_offset=lookup_rva,
                import_entries=_parse_import_entries(
                    buffer, base, lookup_rva, address_rva, word_size
                ),
            )
        )
    return tuple(entries)


def _find_import(
    dir_entries: tuple[ImportDirectoryEntry, ...], address: int
) -> tuple[Optional[str], Optional[str]]:
    for dir_entry in dir_entries:
        for entry in dir_entry.import_entries:
            if entry.address == address:
                return dir_entry.lib_name, entry.name
    return None, None


def _parse_import_address_table(
    buffer: bytes,
    base: int,
    iat_rva: int,
    iat_size: int,
    word_size: int,
    dir_entries: tuple[ImportDirectoryEntry, ...],
) -> tuple[ImportAddressEntry, ...]:
    word_format = "<Q" if word_size == 8 else "<I"
    length = max(iat_size // word_size - 1, 0) if iat_size else 0
    table = []
    for index in range(length):
        (value,) = _unpack(word_format, buffer, iat_rva - base + index * word_size)
        lib_name, import_name = _find_import(dir_entries, value)
        table.append(
            ImportAddressEntry(
                key=iat_rva + index * word_size,
                value=value,
                lib_name=lib_name,
                import_name=import_name,
            )
        )
    return tuple(table)


def _parse_exports(
    buffer: bytes, base: int, directory_rva: int
) -> tuple[ExportEntry, ...]:
    start = directory_rva - base
    address_count, name_count, address_table_rva, name_table_rva = _unpack(
        "<IIII", buffer, start + 20
    )
    if address_count < name_count:
        raise PeFormatError("unsupported export address table data")
    entries = []
    for index in range(address_count):
        (address,) = _unpack("<I", buffer, address_table_rva - base + 4 * index)
        if index >= name_count:
            name = UNKNOWN_EXPORT_NAME
        else:
            (name_rva,) = _unpack("<I", buffer, name_table_rva - base + 4 * index)
            name = _cstring(buffer, name_rva - base)
        entries.append(ExportEntry(address=address, name=name))
    return tuple(entries)


def _parse_symbols(data: bytes, table_offset: int, count: int) -> tuple[Symbol, ...]:
    if not count:
        return ()
    string_table_offset = table_offset + SYMBOL_SIZE * count
    (string_table_size,) = _unpack("<I", data, string_table_offset)
    string_table = data[string_table_offset : string_table_offset + string_table_size]
    symbols = []
    index = 0
    while index < count:
        raw_name, value, section_number, symbol_type, storage_class, aux = _unpack(
            "<8sihHBB", data, table_offset + index * SYMBOL_SIZE
        )
        if raw_name[:4] == b"\0\0\0\0":
            (name_offset,) = struct.unpack_from("<I", raw_name, 4)
            name = _cstring(string_table, name_offset)
        else:
            name = raw_name.split(b"\0", 1)[0].decode("latin-1")
        symbols.append(
            Symbol(
                name=name,
                value=value,
                section_index=section_number - 1,
                type=symbol_type,
                storage_class=storage_class,
                auxiliary_symbols_len=aux,
                raw_index=index,
            )
        )
        index += 1 + aux
    return tuple(symbols)


def _parse_relocations(buffer: bytes, directory_size: int) -> tuple[RelocationEntry, ...]:
    relocations = []
    position = 0
    while position < directory_size:
        page_rva, block_size = _unpack("<II", buffer, position)
        if block_size < _RELOCATION_BLOCK_HEADER_SIZE:
            raise PeFormatError(f"invalid relocation block size {block_size}")
        count = (block_size - _RELOCATION_BLOCK_HEADER_SIZE) // 2
        for index in range(count):
            (raw,) = _unpack(
                "<H",
                buffer,
                position + _RELOCATION_BLOCK_HEADER_SIZE + 2 * index,
            )
            relocations.append(
                RelocationEntry(
                    offset=raw & 0x0FFF, type=raw >> 12, block_page_rva=page_rva
                )
            )
        position += block_size
    return tuple(relocations)


def parse_pe(data: bytes) -> PeData:
    """Parse a complete PE image held in memory."""
    data = bytes(data)
    (dos_magic,) = _unpack("<H", data, 0)
    if dos_magic != DOS_MAGIC:
        raise PeFormatError("invalid DOS header")
    (header_start,) = _unpack("<I", data, DOS_HEADER_LFANEW_OFFSET)

    (
        machine,
        number_of_sections,
        _timestamp,
        pointer_to_symbol_table,
        number_of_symbols,
        _optional_size,
        _characteristics,
    ) = _unpack("<HHIIIHH", data, header_start + PE_SIGNATURE_SIZE)

    optional_start = header_start + WIN_OPTIONAL_HEADER_START
    (magic,) = _unpack("<H", data, optional_start)
    layout = _LAYOUTS.get(magic)
    if layout is None:
        raise PeFormatError(f"invalid PE header magic {magic:#x}")

    address_of_entry_point, base_of_code = _unpack("<II", data, optional_start + 16)
    (image_base,) = _unpack(
        layout.image_base_format, data, optional_start + layout.image_base_offset
    )
    image_size, headers_size = _unpack("<II", data, optional_start + 56)
    (directory_count,) = _unpack("<I", data, optional_start + layout.rva_count_offset)
    if directory_count != DATA_DIRECTORY_COUNT:
        raise PeFormatError("unsupported data directory size")
    directories_start = optional_start + layout.rva_count_offset + 4
    data_directories = tuple(
        _unpack("<II", data, directories_start + 8 * index)
        for index in range(DATA_DIRECTORY_COUNT)
    )

    section_headers = _parse_section_headers(
        data, optional_start + layout.size, number_of_sections
    )
    word_size = layout.word_size

    import_rva, _import_size = data_directories[DATA_DIR_IMPORT_INDEX]
    import_section = _section_containing(section_headers, import_rva)
    import_dir_entries: tuple[ImportDirectoryEntry, ...] = ()
    import_address_table: tuple[ImportAddressEntry, ...] = ()
    if import_section is not None:
        buffer = _section_data(data, import_section)
        base = import_section.virtual_base_address
        import_dir_entries = _parse_import_directory(buffer, base, import_rva, word_size)
        iat_rva, iat_size = data_directories[DATA_DIR_IAT_INDEX]
        import_address_table = _parse_import_address_table(
            buffer, base, iat_rva, iat_size, word_size, import_dir_entries
        )

    export_rva, _export_size = data_directories[DATA_DIR_EXPORT_INDEX]
    export_section = _section_containing(section_headers, export_rva)
    export_section_name = None
    export_entries: tuple[ExportEntry, ...] = ()
    if export_section is not None:
        export_section_name = export_section.name
        export_entries = _parse_exports(
            _section_data(data, export_section),
            export_section.virtual_base_address,
            export_rva,
        )

    symbols = _parse_symbols(data, pointer_to_symbol_table, number_of_symbols)

    relocations: tuple[RelocationEntry, ...] = ()
    relocation_section = find_section_header(section_headers, ".reloc")
    if relocation_section is not None:
        _reloc_rva, reloc_size = data_directories[DATA_DIR_RELOC_INDEX]
        relocations = _parse_relocations(
            _section_data(data, relocation_section), reloc_size
        )

    return PeData(
        dos_magic=dos_magic,
        image_file_header_start=header_start,
        machine=machine,
        pointer_to_symbol_table=pointer_to_symbol_table,
        number_of_symbols=number_of_symbols,
        magic=magic,
        address_of_entry_point=address_of_entry_point,
        base_of_code=base_of_code,
        image_base=image_base,
        image_size=image_size,
        headers_size=headers_size,
        data_directories=data_directories,
        entrypoint=image_base + address_of_entry_point,
        section_headers=section_headers,
        import_section=import_section,
        import_dir_entries=import_dir_entries,
        import_address_table=import_address_table,
        export_section_name=export_section_name,
        export_entries=export_entries,
        symbols=symbols,
        relocations=relocations,
    )


def read_pe(path: Union[str, PathLike]) -> PeData:
    """Read and parse the PE image stored at ``path``."""
    return parse_pe(Path(path).read_bytes())


def find_section_header(section_headers, name: str) -> Optional[SectionHeader]:
    """Return the first section header called ``name``, or None."""
    return next((s for s in section_headers if s.name == name), None)