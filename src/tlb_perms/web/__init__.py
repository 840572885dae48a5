"""Browser-facing inspector for a compiled memory map.

This package provides a Flask application that answers permission
lookups over HTTP.  It is an **optional** extra — install with::

    pip install tlb-perms[web]

The ``create_app`` factory in ``app.py`` builds a resolver and serves:

- ``GET /api/lookup/<address>`` — permissions at one address.
- ``GET /api/groups`` — permission groups and per-bit decision masks.
- ``GET /api/status`` — page-map homogeneity and region count.
"""
