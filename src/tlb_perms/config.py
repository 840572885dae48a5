"""Lookup parameters and memory-map files.

The permission resolver is sized by three numbers taken from the core
it serves:

    - **xlen** — register width in bits (32 or 64 for RISC-V).  Atomics
      operate on 4 bytes up to one register.
    - **cache_block_bytes** — the unit a cache fetches.  Uncached
      accesses range from one byte up to this size.
    - **page_size** — the translation granule.  Only blocks at least
      this big can be answered by a page-granular permission cache.

A memory map can be described in code (a list of ``MemoryRegion``) or in
a JSON file, which is handy for the web inspector::

    {
      "xlen": 64, "cache_block_bytes": 64, "page_size": 4096,
      "regions": [
        {"name": "ram", "base": "0x80000000", "size": "0x10000000",
         "get": [1, 64], "put_full": [1, 64], "executable": true}
      ]
    }

Numbers may be JSON integers or strings in any Python base prefix.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from tlb_perms.address import AddressError, AddressSet, TransferSizes, is_pow2
from tlb_perms.regions import ConfigurationError, MemoryRegion

if TYPE_CHECKING:
    from pathlib import Path

MIN_XLEN = 8
MIN_AMO_BYTES = 4

# JSON key → MemoryRegion field for each transfer-size capability
_CAPABILITY_KEYS = {
    "get": "supports_get",
    "put_full": "supports_put_full",
    "put_partial": "supports_put_partial",
    "acquire_b": "supports_acquire_b",
    "acquire_t": "supports_acquire_t",
    "arithmetic": "supports_arithmetic",
    "logical": "supports_logical",
}

_FLAG_KEYS = {
    "get_effects": "has_get_effects",
    "put_effects": "has_put_effects",
    "executable": "executable",
}


@dataclass(frozen=True)
class LookupParameters:
    """Core sizing parameters for building a permission resolver.

    Raises:
        ConfigurationError: If any parameter is not a suitable power of two.

    """

    xlen: int
    cache_block_bytes: int
    page_size: int

    def __post_init__(self) -> None:
        """Check the parameters against each other."""
        if not is_pow2(self.xlen) or self.xlen < MIN_XLEN:
            msg = f"xlen must be a power of two >= {MIN_XLEN}, got {self.xlen}"
            raise ConfigurationError(msg)
        if not is_pow2(self.cache_block_bytes) or self.cache_block_bytes < self.xlen // 8:
            msg = (
                f"cache_block_bytes must be a power of two >= {self.xlen // 8}, "
                f"got {self.cache_block_bytes}"
            )
            raise ConfigurationError(msg)
        if not is_pow2(self.page_size) or self.page_size < self.cache_block_bytes:
            msg = (
                f"page_size must be a power of two >= {self.cache_block_bytes}, "
                f"got {self.page_size}"
            )
            raise ConfigurationError(msg)

    @property
    def transfer_sizes(self) -> TransferSizes:
        """Return the size a cache uses to move a block."""
        return TransferSizes(self.cache_block_bytes, self.cache_block_bytes)

    @property
    def all_sizes(self) -> TransferSizes:
        """Return every uncached access size, a byte up to a block."""
        return TransferSizes(1, self.cache_block_bytes)

    @property
    def supports_atomics(self) -> bool:
        """Return True if a register is wide enough for a word atomic."""
        return self.xlen // 8 >= MIN_AMO_BYTES

    @property
    def amo_sizes(self) -> TransferSizes:
        """Return the sizes atomic memory operations use.

        Raises:
            ConfigurationError: If the core is narrower than a word.

        """
        if not self.supports_atomics:
            msg = f"xlen {self.xlen} is too narrow for {MIN_AMO_BYTES}-byte atomics"
            raise ConfigurationError(msg)
        return TransferSizes(MIN_AMO_BYTES, self.xlen // 8)


def _number(value: Any, what: str) -> int:
    """Convert a JSON int or numeric string to an int."""
    if isinstance(value, bool):
        msg = f"{what} must be a number, got {value!r}"
        raise ConfigurationError(msg)
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as e:
            msg = f"{what} is not a number: {value!r}"
            raise ConfigurationError(msg) from e
    msg = f"{what} must be a number, got {value!r}"
    raise ConfigurationError(msg)


def _address(entry: dict[str, Any], name: str) -> tuple[AddressSet, ...]:
    """Read a region's address sets from ``address`` or ``base``/``size``."""
    if "address" in entry:
        pairs = entry["address"]
        return tuple(
            AddressSet(_number(base, f"{name} base"), _number(mask, f"{name} mask"))
            for base, mask in pairs
        )
    if "base" in entry and "size" in entry:
        base = _number(entry["base"], f"{name} base")
        size = _number(entry["size"], f"{name} size")
        return AddressSet.misaligned(base, size)
    msg = f"Region '{name}' needs either 'address' or 'base' and 'size'"
    raise ConfigurationError(msg, region=name)


def parse_region(entry: dict[str, Any]) -> MemoryRegion:
    """Build a ``MemoryRegion`` from one decoded JSON object.

    Raises:
        ConfigurationError: If the entry is incomplete or malformed.

    """
    if not isinstance(entry, dict):
        msg = f"Region entry must be a JSON object, got {entry!r}"
        raise ConfigurationError(msg)
    name = entry.get("name")
    if not isinstance(name, str) or not name:
        msg = f"Region entry is missing a name: {entry!r}"
        raise ConfigurationError(msg)
    kwargs: dict[str, Any] = {}
    try:
        address = _address(entry, name)
        for key, attr in _CAPABILITY_KEYS.items():
            if key in entry:
                low, high = entry[key]
                kwargs[attr] = TransferSizes(
                    _number(low, f"{name} {key}"),
                    _number(high, f"{name} {key}"),
                )
    except ConfigurationError:
        raise
    except (AddressError, TypeError, ValueError) as e:
        msg = f"Region '{name}' is malformed: {e}"
        raise ConfigurationError(msg, region=name) from e
    for key, attr in _FLAG_KEYS.items():
        if key in entry:
            value = entry[key]
            if not isinstance(value, bool):
                msg = f"Region '{name}' flag '{key}' must be true or false, got {value!r}"
                raise ConfigurationError(msg, region=name)
            kwargs[attr] = value
    return MemoryRegion(name=name, address=address, **kwargs)


def parse_memory_map(data: dict[str, Any]) -> tuple[LookupParameters, list[MemoryRegion]]:
    """Build lookup parameters and regions from a decoded memory map.

    Raises:
        ConfigurationError: If a required key is missing or malformed.

    """
    if not isinstance(data, dict):
        msg = f"Memory map must be a JSON object, got {data!r}"
        raise ConfigurationError(msg)
    try:
        params = LookupParameters(
            xlen=_number(data["xlen"], "xlen"),
            cache_block_bytes=_number(data["cache_block_bytes"], "cache_block_bytes"),
            page_size=_number(data["page_size"], "page_size"),
        )
    except KeyError as e:
        msg = f"Memory map is missing {e.args[0]!r}"
        raise ConfigurationError(msg) from e
    entries = data.get("regions", [])
    if not isinstance(entries, list):
        msg = f"Memory map 'regions' must be a list, got {entries!r}"
        raise ConfigurationError(msg)
    regions = [parse_region(entry) for entry in entries]
    return params, regions


def load_memory_map(path: Path) -> tuple[LookupParameters, list[MemoryRegion]]:
    """Read a JSON memory map from *path*.

    Raises:
        ConfigurationError: If the file cannot be read or parsed.

    """
    try:
        data = json.loads(path.read_text())
    except (OSError, json.JSONDecodeError) as e:
        msg = f"Cannot load memory map {path}: {e}"
        raise ConfigurationError(msg) from e
    if not isinstance(data, dict):
        msg = f"Memory map {path} must be a JSON object"
        raise ConfigurationError(msg)
    return parse_memory_map(data)
