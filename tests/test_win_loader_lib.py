import struct

import pytest

from tinyloader.pe_tools import (
    PE32_PLUS_MAGIC,
    SYMBOL_CLASS_EXTERNAL,
    SYMBOL_TYPE_FUNCTION,
    ImportAddressEntry,
    PeData,
    SectionHeader,
    Symbol,
)
from tinyloader.win_loader_lib import (
    LoaderError,
    MAX_TRAMPOLINE_IAT_SIZE,
    MemoryRegion,
    RuntimeImportEntry,
    RuntimeObject,
    find_runtime_object,
    find_symbol,
    memory_regions_for_sections,
    plan_import_address_table,
    runtime_import_address_table,
    trampoline_code,
)


def _pe(image_base=0x140000000, sections=(), symbols=()):
    return PeData(
        dos_magic=0x5A4D,
        image_file_header_start=0x80,
        machine=0x8664,
        pointer_to_symbol_table=0,
        number_of_symbols=len(symbols),
        magic=PE32_PLUS_MAGIC,
        address_of_entry_point=0x1000,
        base_of_code=0x1000,
        image_base=image_base,
        image_size=0x4000,
        headers_size=0x400,
        data_directories=((0, 0),) * 16,
        entrypoint=image_base + 0x1000,
        section_headers=tuple(sections),
        import_section=None,
        import_dir_entries=(),
        import_address_table=(),
        export_section_name=None,
        export_entries=(),
        symbols=tuple(symbols),
        relocations=(),
    )


def _symbol(name, value=0, section_index=0, type_=0, storage_class=SYMBOL_CLASS_EXTERNAL):
    return Symbol(
        name=name,
        value=value,
        section_index=section_index,
        type=type_,
        storage_class=storage_class,
        auxiliary_symbols_len=0,
        raw_index=0,
    )


def test_memory_regions_win():
    headers = [
        SectionHeader(
            name=".text",
            virtual_size=0x48,
            virtual_base_address=0x1000,
            file_offset=0x400,
            characteristics=0x60000020,
        ),
        SectionHeader(
            name=".pdata",
            virtual_size=0x0C,
            virtual_base_address=0x2000,
            file_offset=0x600,
            characteristics=0x40000040,
        ),
    ]
    regions = memory_regions_for_sections(headers, 0x140000000)
    assert len(regions) == 2
    assert regions[0].start == 0x140001000
    assert regions[0].end == 0x140002000
    assert regions[0].is_direct_file_map is False
    assert regions[0].file_offset == 0x400
    assert regions[0].file_size == 0x48
    assert regions[0].permissions == 5
    assert regions[1].start == 0x140002000
    assert regions[1].end == 0x140003000
    assert regions[1].is_direct_file_map is False
    assert regions[1].file_offset == 0x600
    assert regions[1].file_size == 0x0C
    assert regions[1].permissions == 4


def test_memory_regions_are_page_aligned():
    headers = [
        SectionHeader(name=".data", virtual_size=size, virtual_base_address=0x3000)
        for size in (1, 0x1000, 0x1001)
    ]
    for region in memory_regions_for_sections(headers, 0):
        assert region.size % 0x1000 == 0
        assert region.size >= region.file_size


def test_memory_regions_empty():
    assert memory_regions_for_sections([], 0x1000) == []


def test_find_runtime_object():
    first = RuntimeObject(name="a.dll", pe_data=_pe())
    second = RuntimeObject(name="b.dll", pe_data=_pe())
    assert find_runtime_object([first, second], "b.dll") is second
    assert find_runtime_object([first, second], "c.dll") is None


def test_find_symbol_returns_first_match():
    one = _symbol("pow", value=0)
    two = _symbol("pow", value=1)
    assert find_symbol([one, two], "pow") is one
    assert find_symbol([one, two], "sqrt") is None


def test_trampoline_code_layout():
    code = trampoline_code(0x12345678)
    assert code == b"\xb8\x78\x56\x34\x12\xff\xd0"


def test_trampoline_code_rejects_large_address():
    with pytest.raises(LoaderError):
        trampoline_code(0x100000000)


def test_runtime_iat_zero_value_kept():
    entry = ImportAddressEntry(key=0x2000, value=0, lib_name=None, import_name=None)
    (result,) = runtime_import_address_table([entry], [], 0x140000000, 0x7000)
    assert result.key == 0x140000000 + 0x2000
    assert result.value == 0
    assert result.is_variable is False


def test_runtime_iat_function_points_into_trampoline_region():
    lib = RuntimeObject(
        name="lib.dll",
        pe_data=_pe(symbols=[_symbol("large_params", type_=SYMBOL_TYPE_FUNCTION)]),
    )
    entry = ImportAddressEntry(
        key=0x2010, value=0x2100, lib_name="lib.dll", import_name="large_params"
    )
    (result,) = runtime_import_address_table([entry], [lib], 0x140000000, 0x7000)
    assert result.value == 0x7000 + 0x2100
    assert result.is_variable is False
    assert result.import_name == "large_params"


def test_runtime_iat_variable_points_at_data():
    sections = [SectionHeader(name=".text"), SectionHeader(name=".data", virtual_base_address=0x3000)]
    lib = RuntimeObject(
        name="lib.dll",
        pe_data=_pe(
            image_base=0x180000000,
            sections=sections,
            symbols=[_symbol("lib_var_data", value=0x10, section_index=1)],
        ),
    )
    entry = ImportAddressEntry(
        key=0x2010, value=0x2100, lib_name="lib.dll", import_name="lib_var_data"
    )
    (result,) = runtime_import_address_table([entry], [lib], 0x140000000, 0x7000)
    assert result.is_variable is True
    assert result.value == 0x180000000 + 0x3000 + 0x10


def test_runtime_iat_negative_variable_value_rejected():
    lib = RuntimeObject(
        name="lib.dll",
        pe_data=_pe(
            sections=[SectionHeader(name=".data")],
            symbols=[_symbol("var", value=-4)],
        ),
    )
    entry = ImportAddressEntry(key=0x10, value=0x20, lib_name="lib.dll", import_name="var")
    with pytest.raises(LoaderError):
        runtime_import_address_table([entry], [lib], 0, 0)


def test_runtime_iat_ntdll_allowed_without_object():
    entry = ImportAddressEntry(
        key=0x10, value=0x20, lib_name="ntdll.dll", import_name="NtWriteFile"
    )
    (result,) = runtime_import_address_table([entry], [], 0, 0x5000)
    assert result.value == 0x5000 + 0x20
    assert result.lib_name == "ntdll.dll"


def test_runtime_iat_missing_library_raises():
    entry = ImportAddressEntry(key=0x10, value=0x20, lib_name="missing.dll", import_name="f")
    with pytest.raises(LoaderError):
        runtime_import_address_table([entry], [], 0, 0)


def test_plan_empty_table():
    region, writes = plan_import_address_table([], 0x1000, 0x7000)
    assert region is None
    assert writes == []


def test_plan_rejects_large_callback():
    entry = RuntimeImportEntry(key=0x10, value=0x20, lib_name="a", import_name="b")
    with pytest.raises(LoaderError):
        plan_import_address_table([entry], 0x100000000, 0x7000)


def test_plan_rejects_oversized_table():
    entries = [
        RuntimeImportEntry(key=i, value=0, lib_name=None, import_name=None)
        for i in range(MAX_TRAMPOLINE_IAT_SIZE // 8 + 1)
    ]
    with pytest.raises(LoaderError):
        plan_import_address_table(entries, 0x1000, 0x7000)


def test_plan_writes_pointers_and_trampolines():
    entries = [
        RuntimeImportEntry(key=0xA0, value=0, lib_name=None, import_name=None),
        RuntimeImportEntry(key=0xA8, value=0x7100, lib_name="a", import_name="f"),
        RuntimeImportEntry(
            key=0xB0, value=0x9000, lib_name="a", import_name="v", is_variable=True
        ),
    ]
    region, writes = plan_import_address_table(entries, 0x401000, 0x7000)
    assert region == MemoryRegion(
        start=0x7000,
        end=0x7000 + MAX_TRAMPOLINE_IAT_SIZE,
        permissions=7,
    )
    assert writes == [
        (0xA8, struct.pack("<Q", 0x7100)),
        (0x7100, trampoline_code(0x401000)),
        (0xB0, struct.pack("<Q", 0x9000)),
    ]