"""Memory regions — what each device supports, and what that permits.

A system-on-chip memory map is a list of **regions**: RAM, boot ROM,
a UART, an interrupt controller.  Each region advertises which kinds of
bus request it accepts and at what sizes:

    - **Get** — an uncached read.
    - **PutFull / PutPartial** — an uncached write of a whole or
      partially-masked beat.
    - **AcquireB / AcquireT** — a cache fetching a block to share
      (read) or to own (write).
    - **Arithmetic / Logical** — atomic memory operations
      (``amoadd`` vs. ``amoswap``/``amoand``).

The TLB does not care about the exact sizes.  It only needs a fixed
summary per region: *can this address be read, written, executed,
cached, or used for atomics?*  That summary is ``FixedPermissions``.

Before summarising, every region is checked.  A core that is allowed to
read a region will issue reads of any size from a byte up to a cache
block, so a region that claims Get support must accept that whole
range.  Advertising less would let the TLB grant an access the device
cannot serve, so the configuration is rejected up front.

Regions that share a summary are then grouped and their address sets
coalesced.  The groups are the input to the permission resolver.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, fields
from itertools import combinations
from typing import TYPE_CHECKING

from tlb_perms.address import AddressSet, TransferSizes, unify

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from tlb_perms.config import LookupParameters


class ConfigurationError(ValueError):
    """Raise when a memory map or its sizing parameters are invalid.

    Attributes:
        region: Name of the offending region ("" for global problems).
        address: The region's address sets.
        capability: The capability that broke a rule (e.g. "Get").
        declared: What the region advertises, if applicable.
        required: What the rule demands, if applicable.

    """

    def __init__(
        self,
        message: str,
        *,
        region: str = "",
        address: tuple[AddressSet, ...] = (),
        capability: str = "",
        declared: TransferSizes | None = None,
        required: TransferSizes | None = None,
    ) -> None:
        """Create the error with its diagnostic context."""
        super().__init__(message)
        self.region = region
        self.address = address
        self.capability = capability
        self.declared = declared
        self.required = required


def format_address(address: Iterable[AddressSet]) -> str:
    """Render a region's address sets as ``AddressSet(..), AddressSet(..)``."""
    return ", ".join(str(s) for s in address)


@dataclass(frozen=True)
class MemoryRegion:
    """One device's slice of the physical address space.

    Every capability defaults to unsupported, so a description only has
    to mention what the device actually does.
    """

    name: str
    address: tuple[AddressSet, ...]
    supports_get: TransferSizes = TransferSizes.NONE
    supports_put_full: TransferSizes = TransferSizes.NONE
    supports_put_partial: TransferSizes = TransferSizes.NONE
    supports_acquire_b: TransferSizes = TransferSizes.NONE
    supports_acquire_t: TransferSizes = TransferSizes.NONE
    supports_arithmetic: TransferSizes = TransferSizes.NONE
    supports_logical: TransferSizes = TransferSizes.NONE
    has_get_effects: bool = False
    has_put_effects: bool = False
    executable: bool = False


@dataclass(frozen=True)
class FixedPermissions:
    """The size-independent access rights of a region.

    Frozen and hashable so it can key the region groups.
    """

    effects: bool
    readable: bool
    writable: bool
    executable: bool
    cacheable: bool
    arithmetic: bool
    logical: bool

    @classmethod
    def of(cls, region: MemoryRegion) -> FixedPermissions:
        """Summarise *region*'s capabilities."""
        return cls(
            effects=region.has_get_effects or region.has_put_effects,
            # a cached region is read through AcquireB, never Get
            readable=bool(region.supports_get or region.supports_acquire_b),
            # likewise writes go through AcquireT once cached
            writable=bool(region.supports_put_full or region.supports_acquire_t),
            executable=region.executable,
            cacheable=bool(region.supports_acquire_b),
            arithmetic=bool(region.supports_arithmetic),
            logical=bool(region.supports_logical),
        )

    @property
    def useful(self) -> bool:
        """Return True if the region grants at least one permission."""
        return (
            self.readable
            or self.writable
            or self.executable
            or self.cacheable
            or self.arithmetic
            or self.logical
        )

    def __str__(self) -> str:
        """Format as a flag string like ``rwxc--`` (``e`` prefix if effectful)."""
        flags = "".join(
            letter if getattr(self, f.name) else "-"
            for letter, f in zip("rwxcal", fields(self)[1:], strict=True)
        )
        return ("e" if self.effects else "") + flags


def _size_rules(params: LookupParameters) -> tuple[tuple[str, str, TransferSizes], ...]:
    """Return ``(field, capability, required)`` for every size rule."""
    rules = (
        ("supports_get", "Get", params.all_sizes),
        ("supports_put_full", "PutFull", params.all_sizes),
        ("supports_put_partial", "PutPartial", params.all_sizes),
        ("supports_acquire_b", "AcquireB", params.transfer_sizes),
        ("supports_acquire_t", "AcquireT", params.transfer_sizes),
    )
    if not params.supports_atomics:
        return rules
    return (
        *rules,
        ("supports_logical", "Logical", params.amo_sizes),
        ("supports_arithmetic", "Arithmetic", params.amo_sizes),
    )


def _check_atomic_width(region: MemoryRegion, params: LookupParameters, where: str) -> None:
    """Reject atomics on a core whose registers are narrower than a word."""
    if params.supports_atomics:
        return
    for capability, declared in (
        ("Logical", region.supports_logical),
        ("Arithmetic", region.supports_arithmetic),
    ):
        if declared:
            msg = (
                f"Memory region '{region.name}' at {where} supports {declared} "
                f"{capability}, but xlen {params.xlen} cannot issue atomics"
            )
            raise ConfigurationError(
                msg,
                region=region.name,
                address=region.address,
                capability=capability,
                declared=declared,
            )


def validate_region(region: MemoryRegion, params: LookupParameters) -> None:
    """Check one region against the transfer sizes the core will issue.

    Raises:
        ConfigurationError: On the first rule the region breaks.

    """
    where = format_address(region.address)
    _check_atomic_width(region, params, where)
    for attr, capability, required in _size_rules(params):
        declared: TransferSizes = getattr(region, attr)
        if declared and not declared.contains(required):
            msg = (
                f"Memory region '{region.name}' at {where} only supports "
                f"{declared} {capability}, but must support {required}"
            )
            raise ConfigurationError(
                msg,
                region=region.name,
                address=region.address,
                capability=capability,
                declared=declared,
                required=required,
            )

    if region.supports_acquire_b and region.supports_put_full and not region.supports_acquire_t:
        msg = (
            f"Memory region '{region.name}' supports AcquireB (cached read) and "
            "PutFull (un-cached write) but not AcquireT (cached write)"
        )
        raise ConfigurationError(
            msg,
            region=region.name,
            address=region.address,
            capability="AcquireT",
            declared=region.supports_acquire_t,
            required=params.transfer_sizes,
        )


def validate_regions(regions: Iterable[MemoryRegion], params: LookupParameters) -> None:
    """Validate every region, failing on the first bad one."""
    for region in regions:
        validate_region(region, params)


PermissionGroups = dict[FixedPermissions, tuple[AddressSet, ...]]


def _check_disjoint(groups: Mapping[FixedPermissions, tuple[AddressSet, ...]]) -> None:
    """Reject address sets claimed by two different permission groups."""
    for (left, left_sets), (right, right_sets) in combinations(groups.items(), 2):
        for a in left_sets:
            for b in right_sets:
                if a.overlaps(b):
                    msg = f"{a} ({left}) overlaps {b} ({right}) with different permissions"
                    raise ConfigurationError(msg, address=(a, b))


def group_regions(regions: Iterable[MemoryRegion]) -> PermissionGroups:
    """Group regions by permissions and coalesce each group's addresses.

    Regions that grant nothing are dropped: they carry no information
    for the resolver and are treated like unmapped space.

    Raises:
        ConfigurationError: If regions with different permissions overlap.

    """
    members: defaultdict[FixedPermissions, list[AddressSet]] = defaultdict(list)
    for region in regions:
        permissions = FixedPermissions.of(region)
        if permissions.useful:
            members[permissions].extend(region.address)
    groups = {permissions: unify(sets) for permissions, sets in members.items()}
    _check_disjoint(groups)
    return groups


def page_aligned_groups(
    groups: Mapping[FixedPermissions, tuple[AddressSet, ...]],
    page_size: int,
) -> PermissionGroups:
    """Keep only the address sets large enough to cover whole pages."""
    return {
        permissions: tuple(s for s in sets if s.alignment >= page_size)
        for permissions, sets in groups.items()
    }
