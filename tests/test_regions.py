"""Tests for region validation, permission summaries, and grouping.

Each region advertises the bus requests it accepts and at what sizes.
Validation rejects regions that would let the TLB grant an access the
device cannot serve; the survivors are summarised as ``FixedPermissions``
and grouped by that summary.
"""

import pytest

from tlb_perms.address import AddressSet, TransferSizes
from tlb_perms.config import LookupParameters
from tlb_perms.regions import (
    ConfigurationError,
    FixedPermissions,
    MemoryRegion,
    group_regions,
    page_aligned_groups,
    validate_region,
    validate_regions,
)

# -- Named constants (PLR2004) ------------------------------------------------

XLEN = 64
BLOCK = 64
PAGE = 0x1000
PAGE_MASK = PAGE - 1

ALL_SIZES = TransferSizes(1, BLOCK)
BLOCK_SIZES = TransferSizes(BLOCK, BLOCK)
AMO_SIZES = TransferSizes(4, XLEN // 8)


def _params() -> LookupParameters:
    """Return 64-bit core parameters with 64-byte blocks and 4 KiB pages."""
    return LookupParameters(xlen=XLEN, cache_block_bytes=BLOCK, page_size=PAGE)


def _region(name: str = "dev", base: int = PAGE, size: int = PAGE, **caps: object) -> MemoryRegion:
    """Build a region over ``[base, base + size)`` with the given capabilities."""
    return MemoryRegion(name=name, address=AddressSet.misaligned(base, size), **caps)  # type: ignore[arg-type]


class TestValidation:
    """Verify the transfer-size rules."""

    def test_full_featured_region_passes(self) -> None:
        """Cached, atomic-capable RAM satisfies every rule."""
        ram = _region(
            "ram",
            supports_get=ALL_SIZES,
            supports_put_full=ALL_SIZES,
            supports_put_partial=ALL_SIZES,
            supports_acquire_b=BLOCK_SIZES,
            supports_acquire_t=BLOCK_SIZES,
            supports_arithmetic=AMO_SIZES,
            supports_logical=AMO_SIZES,
        )
        validate_region(ram, _params())

    def test_unsupported_capabilities_are_not_checked(self) -> None:
        """A region with no capabilities is valid."""
        validate_region(_region("hole"), _params())

    def test_get_must_cover_all_sizes(self) -> None:
        """Get limited to 4..64 bytes is rejected."""
        region = _region("uart", supports_get=TransferSizes(4, BLOCK))
        with pytest.raises(ConfigurationError, match="only supports \\[4, 64\\] Get") as info:
            validate_region(region, _params())
        assert info.value.region == "uart"
        assert info.value.capability == "Get"
        assert info.value.declared == TransferSizes(4, BLOCK)
        assert info.value.required == ALL_SIZES

    def test_message_names_region_and_address(self) -> None:
        """The error message says which region and where."""
        region = _region("uart", supports_put_full=TransferSizes(1, 4))
        with pytest.raises(ConfigurationError, match="'uart' at AddressSet\\(0x1000, 0xfff\\)"):
            validate_region(region, _params())

    def test_put_partial_must_cover_all_sizes(self) -> None:
        """PutPartial is held to the same byte-to-block range."""
        region = _region(supports_put_partial=TransferSizes(1, 8))
        with pytest.raises(ConfigurationError, match="PutPartial"):
            validate_region(region, _params())

    def test_acquire_b_below_block_size(self) -> None:
        """AcquireB smaller than a cache block is rejected."""
        region = _region(supports_get=ALL_SIZES, supports_acquire_b=TransferSizes(32, 32))
        with pytest.raises(ConfigurationError, match="AcquireB"):
            validate_region(region, _params())

    def test_atomics_must_cover_word_range(self) -> None:
        """Arithmetic atomics must reach a full register."""
        region = _region(supports_arithmetic=TransferSizes(4, 4))
        with pytest.raises(ConfigurationError, match="Arithmetic") as info:
            validate_region(region, _params())
        assert info.value.required == AMO_SIZES

    def test_logical_atomics_checked(self) -> None:
        """Logical atomics follow the same rule."""
        region = _region(supports_logical=TransferSizes(8, 8))
        with pytest.raises(ConfigurationError, match="Logical"):
            validate_region(region, _params())

    def test_narrow_core_rejects_logical_atomics(self) -> None:
        """On a 16-bit core any declared atomic is an error, whatever its sizes."""
        params = LookupParameters(xlen=16, cache_block_bytes=16, page_size=PAGE)
        with pytest.raises(ConfigurationError, match="xlen 16 cannot issue atomics") as info:
            validate_region(_region(supports_logical=AMO_SIZES), params)
        assert info.value.capability == "Logical"
        validate_region(_region(supports_get=TransferSizes(1, 16)), params)

    def test_cached_read_uncached_write_rejected(self) -> None:
        """AcquireB + PutFull without AcquireT is not supported."""
        region = _region(
            "odd",
            supports_get=ALL_SIZES,
            supports_put_full=ALL_SIZES,
            supports_acquire_b=BLOCK_SIZES,
        )
        with pytest.raises(ConfigurationError, match="not AcquireT") as info:
            validate_region(region, _params())
        assert info.value.region == "odd"

    def test_validate_regions_stops_at_first_failure(self) -> None:
        """The first bad region in the list is reported."""
        good = _region("good", supports_get=ALL_SIZES)
        bad = _region("bad", base=0x2000, supports_get=TransferSizes(2, BLOCK))
        with pytest.raises(ConfigurationError) as info:
            validate_regions([good, bad], _params())
        assert info.value.region == "bad"


class TestFixedPermissions:
    """Verify the size-independent permission summary."""

    def test_readable_from_get_or_acquire(self) -> None:
        """Get or AcquireB both make a region readable."""
        assert FixedPermissions.of(_region(supports_get=ALL_SIZES)).readable
        assert FixedPermissions.of(_region(supports_acquire_b=BLOCK_SIZES)).readable

    def test_writable_from_put_or_acquire_t(self) -> None:
        """PutFull or AcquireT make a region writable; PutPartial alone does not."""
        assert FixedPermissions.of(_region(supports_put_full=ALL_SIZES)).writable
        assert FixedPermissions.of(_region(supports_acquire_t=BLOCK_SIZES)).writable
        assert not FixedPermissions.of(_region(supports_put_partial=ALL_SIZES)).writable

    def test_cacheable_and_atomics(self) -> None:
        """Cacheable follows AcquireB; atomics follow their own flags."""
        perms = FixedPermissions.of(
            _region(
                supports_acquire_b=BLOCK_SIZES,
                supports_arithmetic=AMO_SIZES,
                supports_logical=AMO_SIZES,
            )
        )
        assert perms.cacheable
        assert perms.arithmetic
        assert perms.logical
        assert not perms.executable

    def test_effects(self) -> None:
        """Either side effect marks the region effectful."""
        assert FixedPermissions.of(_region(has_get_effects=True)).effects
        assert FixedPermissions.of(_region(has_put_effects=True)).effects

    def test_effects_alone_are_not_useful(self) -> None:
        """A region with only side effects grants nothing."""
        perms = FixedPermissions.of(_region(has_get_effects=True, has_put_effects=True))
        assert not perms.useful

    def test_equal_summaries_hash_equal(self) -> None:
        """Summaries are value types usable as dict keys."""
        a = FixedPermissions.of(_region("a", supports_get=ALL_SIZES))
        b = FixedPermissions.of(_region("b", base=0x8000, supports_get=ALL_SIZES))
        assert a == b
        assert len({a, b}) == 1

    def test_str(self) -> None:
        """String form is a flag string."""
        perms = FixedPermissions.of(
            _region(supports_get=ALL_SIZES, executable=True, has_put_effects=True)
        )
        assert str(perms) == "er-x---"


class TestGrouping:
    """Verify grouping and coalescing by permission summary."""

    def test_same_permissions_coalesce(self) -> None:
        """Adjacent regions with equal rights merge into one block."""
        low = _region("low", base=0, supports_get=ALL_SIZES)
        high = _region("high", base=PAGE, supports_get=ALL_SIZES)
        groups = group_regions([low, high])
        assert list(groups.values()) == [(AddressSet(0, 2 * PAGE - 1),)]

    def test_different_permissions_stay_separate(self) -> None:
        """Regions with different rights form different groups."""
        rom = _region("rom", base=0, supports_get=ALL_SIZES, executable=True)
        ram = _region("ram", base=PAGE, supports_get=ALL_SIZES, supports_put_full=ALL_SIZES)
        groups = group_regions([rom, ram])
        expected_groups = 2
        assert len(groups) == expected_groups

    def test_useless_regions_dropped(self) -> None:
        """Regions that grant nothing do not appear."""
        hole = _region("hole", has_get_effects=True)
        assert group_regions([hole]) == {}

    def test_overlapping_different_permissions_rejected(self) -> None:
        """Two groups may not claim the same address."""
        rom = _region("rom", base=0, size=2 * PAGE, supports_get=ALL_SIZES)
        ram = _region("ram", base=PAGE, supports_get=ALL_SIZES, supports_put_full=ALL_SIZES)
        with pytest.raises(ConfigurationError, match="overlaps"):
            group_regions([rom, ram])

    def test_groups_are_disjoint(self) -> None:
        """No two groups' covers share an address."""
        regions = [
            _region("a", base=0, supports_get=ALL_SIZES),
            _region("b", base=PAGE, supports_put_full=ALL_SIZES),
            _region("c", base=2 * PAGE, supports_get=ALL_SIZES),
            _region("d", base=4 * PAGE, size=4 * PAGE, executable=True),
        ]
        covers = list(group_regions(regions).values())
        for i, left in enumerate(covers):
            for right in covers[i + 1 :]:
                assert not any(a.overlaps(b) for a in left for b in right)

    def test_page_aligned_filter(self) -> None:
        """Sub-page sets are dropped from the page-aligned view."""
        small = _region("small", base=0, size=PAGE // 2, supports_get=ALL_SIZES)
        big = _region("big", base=PAGE, size=PAGE, supports_get=ALL_SIZES)
        aligned = page_aligned_groups(group_regions([small, big]), PAGE)
        assert list(aligned.values()) == [(AddressSet(PAGE, PAGE_MASK),)]
