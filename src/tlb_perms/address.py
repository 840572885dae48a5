"""Address sets and transfer sizes — the vocabulary of a memory map.

A memory map describes which physical addresses belong to which device.
Hardware almost never compares an address against arbitrary ``[lo, hi)``
intervals; instead it matches a handful of address **bits**.  That makes
the natural unit of a memory map an **aligned power-of-two block**:

    base = 0x8000_0000, mask = 0x0fff_ffff
    ⇒ every address whose bits outside ``mask`` equal ``base``

An ``AddressSet`` is exactly that pair.  Because the mask may have holes
(or, after widening, an unbounded run of high "don't care" bits), one
``AddressSet`` can also describe a strided pattern, which is what the
bit-mask minimizer produces when it decides some address bits do not
matter.

Key operations:
    - **contains** — one AND and one compare: ``((a ^ base) & ~mask) == 0``.
    - **overlaps** — two sets share an address iff their bases agree on
      every bit neither mask ignores.
    - **widen** — treat more bits as "don't care", growing the set.
    - **unify** — merge sibling blocks (same mask, bases one bit apart)
      into their parent until nothing merges.

``TransferSizes`` is the other half of a region description: the range
of access sizes (in bytes) a device accepts for a given kind of request.

Design choices:
    - **Frozen dataclasses** — sets are used as dict keys and deduplicated.
    - **Plain Python ints** — they are unbounded, so a negative mask
      (infinitely many don't-care high bits) is just another integer.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from typing import ClassVar


class AddressError(ValueError):
    """Raise when an address set or transfer size is malformed."""


def is_pow2(value: int) -> bool:
    """Return True if *value* is a positive power of two."""
    return value > 0 and value & (value - 1) == 0


@dataclass(frozen=True, order=True)
class AddressSet:
    """A power-of-two aligned set of addresses, ``(base, mask)``.

    Attributes:
        base: The address with every mask bit cleared.
        mask: The bits that may take any value inside the set.

    """

    base: int
    mask: int

    def __post_init__(self) -> None:
        """Reject negative bases and bases that overlap the mask."""
        if self.base < 0:
            msg = f"AddressSet base {self.base:#x} must be non-negative"
            raise AddressError(msg)
        if self.base & self.mask:
            msg = f"AddressSet base {self.base:#x} is not aligned to mask {self.mask:#x}"
            raise AddressError(msg)

    @classmethod
    def misaligned(cls, base: int, size: int) -> tuple["AddressSet", ...]:
        """Split the interval ``[base, base + size)`` into aligned blocks.

        Each step takes the largest block that is both aligned at the
        current base and no bigger than what remains.

        Raises:
            AddressError: If *base* or *size* is negative.

        """
        if base < 0 or size < 0:
            msg = f"Cannot describe range base={base:#x} size={size:#x}"
            raise AddressError(msg)
        blocks: list[AddressSet] = []
        while size > 0:
            base_alignment = base & -base
            size_alignment = 1 << (size.bit_length() - 1)
            if base_alignment == 0 or base_alignment > size_alignment:
                step = size_alignment
            else:
                step = base_alignment
            blocks.append(cls(base, step - 1))
            base += step
            size -= step
        return tuple(blocks)

    @property
    def contiguous(self) -> bool:
        """Return True if the set is a single interval."""
        return self.mask >= 0 and (self.mask + 1) & self.mask == 0

    @property
    def alignment(self) -> int:
        """Return the size of the lowest aligned block in the set."""
        return (self.mask + 1) & ~self.mask

    @property
    def max_address(self) -> int:
        """Return the highest address in the set (bounded masks only)."""
        return self.base | self.mask

    @property
    def size(self) -> int:
        """Return the number of addresses in a contiguous set.

        Raises:
            AddressError: If the set has holes or is unbounded.

        """
        if not self.contiguous:
            msg = f"{self} is not contiguous"
            raise AddressError(msg)
        return self.mask + 1

    def contains(self, address: int) -> bool:
        """Return True if *address* is a member of this set."""
        return ((address ^ self.base) & ~self.mask) == 0

    def contains_set(self, other: "AddressSet") -> bool:
        """Return True if every address of *other* is also in this set."""
        return ((other.mask | (other.base ^ self.base)) & ~self.mask) == 0

    def overlaps(self, other: "AddressSet") -> bool:
        """Return True if the two sets share at least one address."""
        return ((self.base ^ other.base) & ~(self.mask | other.mask)) == 0

    def widen(self, imask: int) -> "AddressSet":
        """Return a larger set that ignores the bits in *imask*."""
        return AddressSet(self.base & ~imask, self.mask | imask)

    def __str__(self) -> str:
        """Format as ``AddressSet(0xbase, 0xmask)`` (``~0x..`` if unbounded)."""
        mask = f"{self.mask:#x}" if self.mask >= 0 else f"~{~self.mask:#x}"
        return f"AddressSet({self.base:#x}, {mask})"


def _merge_siblings(sets: list[AddressSet]) -> list[AddressSet]:
    """Merge pairs with equal masks whose bases differ in one bit."""
    merged = list(sets)
    absorbed = [False] * len(merged)
    for i in range(len(merged) - 1):
        if absorbed[i]:
            continue
        for j in range(i + 1, len(merged)):
            if absorbed[j]:
                continue
            a, b = merged[i], merged[j]
            diff = a.base ^ b.base
            if a.mask == b.mask and is_pow2(diff):
                merged[i] = AddressSet(a.base & ~diff, a.mask | diff)
                absorbed[j] = True
    return [s for s, gone in zip(merged, absorbed, strict=True) if not gone]


def _drop_subsumed(sets: list[AddressSet]) -> list[AddressSet]:
    """Remove sets wholly contained in another member."""
    return [
        s
        for i, s in enumerate(sets)
        if not any(j != i and other.contains_set(s) for j, other in enumerate(sets))
    ]


def unify(sets: Iterable[AddressSet]) -> tuple[AddressSet, ...]:
    """Coalesce *sets* into a small cover of the same addresses.

    Duplicates and subsumed sets are dropped and sibling blocks are
    merged repeatedly until the cover stops shrinking.  The result is
    sorted by base address.
    """
    current = list(dict.fromkeys(sets))
    while True:
        reduced = _drop_subsumed(list(dict.fromkeys(_merge_siblings(current))))
        if len(reduced) == len(current):
            return tuple(sorted(reduced))
        current = reduced


@dataclass(frozen=True)
class TransferSizes:
    """The inclusive range of access sizes a device accepts.

    ``TransferSizes(0, 0)`` (``TransferSizes.NONE``) means the access
    kind is not supported at all, and is falsy.
    """

    min_size: int = 0
    max_size: int = 0

    NONE: ClassVar["TransferSizes"]

    def __post_init__(self) -> None:
        """Check the bounds are ordered powers of two (or both zero)."""
        if self.min_size == 0 and self.max_size == 0:
            return
        if not (is_pow2(self.min_size) and is_pow2(self.max_size)):
            msg = f"Transfer sizes [{self.min_size}, {self.max_size}] must be powers of two"
            raise AddressError(msg)
        if self.min_size > self.max_size:
            msg = f"Transfer sizes [{self.min_size}, {self.max_size}] are out of order"
            raise AddressError(msg)

    def __bool__(self) -> bool:
        """Return True if any transfer size is supported."""
        return self.max_size != 0

    def contains(self, other: "TransferSizes") -> bool:
        """Return True if every size in *other* is also supported here."""
        if not other:
            return True
        return self.min_size <= other.min_size and other.max_size <= self.max_size

    def __str__(self) -> str:
        """Format as ``[min, max]`` or ``none``."""
        if not self:
            return "none"
        return f"[{self.min_size}, {self.max_size}]"


TransferSizes.NONE = TransferSizes()
