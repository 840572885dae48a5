"""TLB permission lookup — compile a static memory map into a decoder.

Re-exports public symbols so callers can write::

    from tlb_perms import build_resolver, MemoryRegion, AddressSet
"""

from tlb_perms.address import AddressError, AddressSet, TransferSizes, unify
from tlb_perms.config import LookupParameters, load_memory_map, parse_memory_map
from tlb_perms.decoder import minimal_discriminating_mask
from tlb_perms.lookup import (
    Homogeneous,
    Inhomogeneous,
    PermissionResolver,
    PermissionVector,
    PropertyTest,
    TLBPermissions,
    build_resolver,
    is_page_map_homogeneous,
)
from tlb_perms.regions import (
    ConfigurationError,
    FixedPermissions,
    MemoryRegion,
    group_regions,
)

__all__ = [
    "AddressError",
    "AddressSet",
    "ConfigurationError",
    "FixedPermissions",
    "Homogeneous",
    "Inhomogeneous",
    "LookupParameters",
    "MemoryRegion",
    "PermissionResolver",
    "PermissionVector",
    "PropertyTest",
    "TLBPermissions",
    "TransferSizes",
    "build_resolver",
    "group_regions",
    "is_page_map_homogeneous",
    "load_memory_map",
    "minimal_discriminating_mask",
    "parse_memory_map",
    "unify",
]
