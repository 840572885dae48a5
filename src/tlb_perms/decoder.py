"""Address decoder — find the fewest address bits that tell two maps apart.

A hardware address decoder does not need to compare every address bit.
If all "yes" devices live below ``0x8000_0000`` and all "no" devices
live above it, bit 31 alone answers the question.  Every bit the decoder
can ignore is a comparator that never gets built.

The minimizer works on two collections of ``AddressSet`` that must not
share any address:

1. Start from every bit that appears in any base.  Ignoring all other
   bits is always safe: two disjoint sets differ in some base bit that
   neither mask covers.
2. Walk those bits from most to least significant.  Tentatively ignore
   the bit by widening every set; if no yes-set now overlaps a no-set,
   keep it ignored.
3. Stop when every remaining bit has been tried.  The result is a fixed
   point: no single remaining bit can be dropped.

If either side is empty there is nothing to distinguish, so the answer
is the empty mask and the caller's test degenerates to a constant.
"""

from collections.abc import Sequence

from tlb_perms.address import AddressError, AddressSet


def _collides(yes: Sequence[AddressSet], no: Sequence[AddressSet]) -> bool:
    """Return True if any yes-set shares an address with any no-set."""
    return any(a.overlaps(b) for a in yes for b in no)


def _separates(yes: Sequence[AddressSet], no: Sequence[AddressSet], mask: int) -> bool:
    """Return True if looking only at *mask* bits keeps the sides apart."""
    ignored = ~mask
    return not _collides([s.widen(ignored) for s in yes], [s.widen(ignored) for s in no])


def minimal_discriminating_mask(yes: Sequence[AddressSet], no: Sequence[AddressSet]) -> int:
    """Return a minimal set of address bits separating *yes* from *no*.

    Args:
        yes: Address sets that must classify as members.
        no: Address sets that must classify as non-members.

    Returns:
        A bit mask; only these bits of an address need to be examined.

    Raises:
        AddressError: If a yes-set and a no-set overlap.

    """
    if _collides(yes, no):
        msg = "Cannot discriminate overlapping address sets"
        raise AddressError(msg)
    if not yes or not no:
        return 0

    mask = 0
    for s in (*yes, *no):
        mask |= s.base

    for bit in reversed(range(mask.bit_length())):
        probe = 1 << bit
        if not mask & probe:
            continue
        candidate = mask & ~probe
        if _separates(yes, no, candidate):
            mask = candidate
    return mask
