"""TLB permission lookup — answer "what may I do here?" without a page walk.

When a core touches a physical address that is not backed by a page
table entry (machine mode, or an identity-mapped I/O window), the TLB
still has to know whether the access is legal: can this address be
read? written? fetched from? cached? used for an atomic?  Asking the
bus every time is too slow, so the answer is compiled, once, from the
static memory map into a small decoder.

Pipeline::

    regions ──validate──► FixedPermissions per region
            ──group────► {permissions: coalesced AddressSets}
            ──filter───► only sets covering whole pages
            ──per bit──► minimal mask + cheapest membership test
            ──compose──► PermissionResolver(address) → lookup result

Each permission bit gets its own test.  The groups are split into the
ones that grant the bit ("yes") and the ones that don't ("no").  The
address decoder finds the fewest address bits that separate the two
sides; every set is then widened to ignore the rest and re-coalesced.
Whichever side ends up with fewer sets becomes the test: "address is
in some yes-set" or "address is in no no-set".  Both answer the same
for every mapped page; the smaller one simply needs fewer comparators.

Answers are only trusted for **homogeneous** addresses: those inside a
page-aligned block of a single permission group.  Unmapped space and
regions smaller than a page are inhomogeneous, and the caller must fall
back to a finer-grained check.  ``PermissionResolver.__call__`` makes
that explicit by returning ``Inhomogeneous`` with no permission bits at
all.  ``PermissionResolver.permissions`` returns the flat hardware-style
record whose bits are meaningless when ``homogeneous`` is False.
"""

from __future__ import annotations

from dataclasses import dataclass
from operator import attrgetter
from typing import TYPE_CHECKING

from tlb_perms.address import AddressSet, unify
from tlb_perms.config import LookupParameters
from tlb_perms.decoder import minimal_discriminating_mask
from tlb_perms.logging import LogLevel
from tlb_perms.regions import (
    ConfigurationError,
    FixedPermissions,
    group_regions,
    page_aligned_groups,
    validate_regions,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping, Sequence

    from tlb_perms.logging import Logger
    from tlb_perms.regions import MemoryRegion, PermissionGroups

_SOURCE = "tlb"

# Order matches the fields of PermissionVector
PROPERTIES = ("readable", "writable", "executable", "cacheable", "arithmetic", "logical")


@dataclass(frozen=True)
class PermissionVector:
    """The six permission bits of a homogeneous address."""

    readable: bool
    writable: bool
    executable: bool
    cacheable: bool
    arithmetic: bool
    logical: bool

    @classmethod
    def from_fixed(cls, permissions: FixedPermissions) -> PermissionVector:
        """Drop the effects flag from a region summary."""
        return cls(*(getattr(permissions, name) for name in PROPERTIES))


@dataclass(frozen=True)
class Homogeneous:
    """A lookup that landed in a uniform page; its permissions are valid."""

    permissions: PermissionVector

    homogeneous = True


@dataclass(frozen=True)
class Inhomogeneous:
    """A lookup in unmapped space or a sub-page region; check elsewhere."""

    homogeneous = False


PageLookup = Homogeneous | Inhomogeneous


@dataclass(frozen=True)
class TLBPermissions:
    """Flat lookup result, as a decoder would drive it onto wires.

    When ``homogeneous`` is False the other fields are don't-care.
    """

    homogeneous: bool
    readable: bool
    writable: bool
    executable: bool
    cacheable: bool
    arithmetic: bool
    logical: bool


@dataclass(frozen=True)
class PropertyTest:
    """A synthesised membership test for one permission bit.

    Attributes:
        name: The permission this test decides (e.g. "readable").
        decision_mask: Address bits the test examines.
        ranges: Widened address sets the test compares against.
        inverted: True if *ranges* are the "no" side.

    """

    name: str
    decision_mask: int
    ranges: tuple[AddressSet, ...]
    inverted: bool

    @property
    def comparators(self) -> int:
        """Return how many range comparisons the test performs."""
        return len(self.ranges)

    @property
    def constant(self) -> bool:
        """Return True if the answer does not depend on the address."""
        return not self.ranges or any(r.mask == -1 for r in self.ranges)

    def __call__(self, address: int) -> bool:
        """Return whether *address* has this permission."""
        hit = any(r.contains(address) for r in self.ranges)
        return hit != self.inverted


def _simplify(sets: Sequence[AddressSet], decision_mask: int) -> tuple[AddressSet, ...]:
    """Ignore every bit outside *decision_mask* and re-coalesce."""
    return unify(s.widen(~decision_mask) for s in sets)


def synthesize_property(
    groups: Mapping[FixedPermissions, Sequence[AddressSet]],
    name: str,
    predicate: Callable[[FixedPermissions], bool] | None = None,
) -> PropertyTest:
    """Build the cheapest exact test for one permission bit.

    Args:
        groups: Page-aligned permission groups.
        name: Permission name; also the predicate if none is given.
        predicate: Decides which groups grant the permission.

    Returns:
        A ``PropertyTest`` that is exact on every address in *groups*.

    """
    grants = predicate if predicate is not None else attrgetter(name)
    yes = [s for permissions, sets in groups.items() if grants(permissions) for s in sets]
    no = [s for permissions, sets in groups.items() if not grants(permissions) for s in sets]

    decision_mask = minimal_discriminating_mask(yes, no)
    yes_simplified = _simplify(yes, decision_mask)
    no_simplified = _simplify(no, decision_mask)

    if len(yes_simplified) < len(no_simplified):
        return PropertyTest(name, decision_mask, yes_simplified, inverted=False)
    return PropertyTest(name, decision_mask, no_simplified, inverted=True)


class PermissionResolver:
    """Map a physical address to its TLB permissions.

    Built once from a static memory map; immutable and safe to call from
    anywhere afterwards.
    """

    def __init__(
        self,
        *,
        groups: PermissionGroups,
        tests: dict[str, PropertyTest],
        homogeneous_sets: tuple[AddressSet, ...],
    ) -> None:
        """Assemble a resolver from synthesised parts.

        Use ``PermissionResolver.build`` (or ``build_resolver``) rather
        than calling this directly.
        """
        self._groups = groups
        self._tests = tests
        self._homogeneous_sets = homogeneous_sets

    @classmethod
    def build(
        cls,
        regions: Iterable[MemoryRegion],
        params: LookupParameters,
        *,
        logger: Logger | None = None,
    ) -> PermissionResolver:
        """Validate *regions* and synthesise a resolver for them.

        Raises:
            ConfigurationError: If any region is invalid or regions with
                different permissions overlap.

        """
        regions = list(regions)
        try:
            validate_regions(regions, params)
            grouped = group_regions(regions)
        except ConfigurationError as e:
            if logger is not None:
                logger.log(LogLevel.ERROR, str(e), source=_SOURCE)
            raise

        groups = page_aligned_groups(grouped, params.page_size)
        if logger is not None:
            logger.log(
                LogLevel.INFO,
                f"{len(regions)} regions in {len(groups)} permission groups",
                source=_SOURCE,
            )
            for permissions, sets in groups.items():
                dropped = len(grouped[permissions]) - len(sets)
                logger.log(
                    LogLevel.DEBUG,
                    f"group {permissions}: {len(sets)} page-aligned sets, {dropped} sub-page",
                    source=_SOURCE,
                )

        tests: dict[str, PropertyTest] = {}
        for name in PROPERTIES:
            test = synthesize_property(groups, name)
            tests[name] = test
            if logger is not None:
                side = "no" if test.inverted else "yes"
                logger.log(
                    LogLevel.DEBUG,
                    f"{name}: mask {test.decision_mask:#x}, {test.comparators} {side}-side comparators",
                    source=_SOURCE,
                )

        homogeneous_sets = unify(s for sets in groups.values() for s in sets)
        if logger is not None:
            verdict = all(len(groups[p]) == len(grouped[p]) for p in grouped)
            logger.log(LogLevel.INFO, f"page map homogeneous: {verdict}", source=_SOURCE)
        return cls(groups=groups, tests=tests, homogeneous_sets=homogeneous_sets)

    @property
    def groups(self) -> PermissionGroups:
        """Return the page-aligned permission groups."""
        return dict(self._groups)

    @property
    def tests(self) -> dict[str, PropertyTest]:
        """Return the per-permission tests, keyed by permission name."""
        return dict(self._tests)

    @property
    def homogeneous_sets(self) -> tuple[AddressSet, ...]:
        """Return the cover of every homogeneous address."""
        return self._homogeneous_sets

    def homogeneous(self, address: int) -> bool:
        """Return True if *address* lies in a uniform, mapped page."""
        return any(s.contains(address) for s in self._homogeneous_sets)

    def permissions(self, address: int) -> TLBPermissions:
        """Return the flat permission record for *address*.

        The permission fields are don't-care when ``homogeneous`` is False.
        """
        return TLBPermissions(
            self.homogeneous(address),
            *(self._tests[name](address) for name in PROPERTIES),
        )

    def __call__(self, address: int) -> PageLookup:
        """Look up *address*, withholding permissions if not homogeneous."""
        if not self.homogeneous(address):
            return Inhomogeneous()
        return Homogeneous(PermissionVector(*(self._tests[name](address) for name in PROPERTIES)))


def build_resolver(
    regions: Iterable[MemoryRegion],
    xlen: int,
    cache_block_bytes: int,
    page_size: int,
    *,
    logger: Logger | None = None,
) -> PermissionResolver:
    """Build a permission resolver for a static memory map.

    Args:
        regions: The memory map.
        xlen: Register width in bits.
        cache_block_bytes: Cache block size in bytes.
        page_size: Translation page size in bytes.
        logger: Optional build log.

    Raises:
        ConfigurationError: If the parameters or any region are invalid.

    """
    params = LookupParameters(xlen=xlen, cache_block_bytes=cache_block_bytes, page_size=page_size)
    return PermissionResolver.build(regions, params, logger=logger)


def is_page_map_homogeneous(regions: Iterable[MemoryRegion], page_size: int) -> bool:
    """Return True if no permission boundary falls inside a page.

    Every coalesced group must consist only of blocks of at least
    *page_size*, so a page-granular permission cache is exact.
    """
    return all(
        s.alignment >= page_size for sets in group_regions(regions).values() for s in sets
    )
