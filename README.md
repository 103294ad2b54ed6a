# tinyloader

Tools for looking inside Windows PE images and for working out how a
small user-space loader would lay them out in memory. It also has a few
small Linux system utilities.

## Installation

```
pip install .
```

Add the `test` extra to run the test suite:

```
pip install ".[test]"
pytest
```

## Commands

### readwin

Prints a report on a PE file. The report covers its headers, section
headers, imports, the import address table, exports and base relocations.
It always prints the number of COFF symbols.

```
readwin program.exe
readwin program.exe -s
```

With `-s` the report also lists each entry of the COFF symbol table.
`readwin` exits with status 1 and a message on standard error in three
cases:

- no file is given, or the first argument starts with `--`;
- the file cannot be opened;
- the file is not a PE image it can parse.

### tinyfetch

Prints a short summary of the system:

- the user and host;
- the OS name (`PRETTY_NAME` from `/etc/os-release`) and the machine type;
- the kernel release;
- the uptime from `/proc/uptime`;
- the login shell from `/etc/passwd`.

```
tinyfetch
tinyfetch --extra
```

`--extra` first prints the process id, the working directory and the
start of `/proc/self/maps`.

### tinyloader-env

Prints the number of arguments and then each argument, counting the
program name. When there are more than three arguments it also prints the
environment as `NAME=value` lines. After that it prints the auxiliary
vector read from `/proc/self/auxv`, as `index: {key, value}` in hex.

```
tinyloader-env a b c d
```

## Library

```python
from tinyloader.pe_tools import read_pe, find_section_header
from tinyloader.win_loader_lib import memory_regions_for_sections

pe = read_pe("program.exe")
text = find_section_header(pe.section_headers, ".text")
for region in memory_regions_for_sections(pe.section_headers, pe.image_base):
    print(hex(region.start), hex(region.end), region.permissions)
```

### `tinyloader.pe_tools`

- `parse_pe` parses a PE32 or PE32+ image from bytes. `read_pe` reads
  one from a file. Both return a frozen `PeData`.
- `PeData` holds the following:
  - the header fields;
  - the section headers (`SectionHeader`);
  - the import directory (`ImportDirectoryEntry`, `ImportEntry`);
  - the import address table (`ImportAddressEntry`);
  - the exports (`ExportEntry`);
  - the COFF symbols (`Symbol`);
  - the base relocations (`RelocationEntry`).
- `SectionHeader.permissions()` gives the section's rights as read=4,
  write=2, execute=1.
- `find_section_header` finds a section by name.
- Malformed or truncated input raises `PeFormatError`, a `ValueError`.

### `tinyloader.win_loader_lib`

- `memory_regions_for_sections` turns section headers into page-aligned
  `MemoryRegion`s at a given base.
- `find_runtime_object` and `find_symbol` look things up by name.
- `runtime_import_address_table` resolves import address table entries
  against loaded libraries, given as `RuntimeObject`s. It returns
  `RuntimeImportEntry`s. An exported variable resolves to the variable's
  own address.
- `trampoline_code` builds the 7-byte `mov eax, imm32; call eax` stub for
  a callback address that fits in 32 bits.
- `plan_import_address_table` returns the region to map for the
  trampolines and the ordered `(address, bytes)` writes that fill the
  table.
- Problems raise `LoaderError`.

### `tinyloader.text`

- `parse_decimal` parses unsigned decimal digits. Any other text gives 0.
- `split_fields` splits text on a separator.
- `lookup_user` finds a user's `PasswdEntry` (name and shell) in
  passwd-format text.
- `read_prefix` reads the first 4 KiB of a file as text.

### Reports and helpers

- `tinyloader.readwin.format_report` returns the `readwin` report as a
  string.
- `tinyloader.tinyfetch` offers `os_pretty_name` and `format_uptime`.
- `tinyloader.env` offers `parse_auxv`, `read_auxv` and
  `format_env_report`.

## What it does not do

tinyloader does not load or run programs. The functions in
`win_loader_lib` work out regions, addresses and bytes, but they never map
memory, write to it or jump to code. There is no command that executes a
PE file. The package does not parse ELF files either.