"""Flask application factory for the permission inspector.

The ``create_app`` function builds a resolver from a memory map and
returns a Flask app with three endpoints:

- ``GET /api/lookup/<address>`` — look up one address (hex or decimal).
- ``GET /api/groups`` — list permission groups and decision masks.
- ``GET /api/status`` — report page-map homogeneity and region count.
"""

from __future__ import annotations

import os
from dataclasses import asdict
from pathlib import Path
from typing import TYPE_CHECKING

from flask import Flask, Response, jsonify

from tlb_perms.config import load_memory_map
from tlb_perms.logging import Logger
from tlb_perms.lookup import Homogeneous, PermissionResolver, is_page_map_homogeneous

if TYPE_CHECKING:
    from collections.abc import Sequence

    from tlb_perms.config import LookupParameters
    from tlb_perms.regions import MemoryRegion

_HTTP_BAD_REQUEST = 400
MAP_ENV_VAR = "TLB_PERMS_MAP"


def create_app(regions: Sequence[MemoryRegion], params: LookupParameters) -> Flask:
    """Create and configure the Flask application.

    Build the resolver up front so configuration errors surface before
    the server starts.

    Returns:
        A configured Flask application ready to serve.

    """
    logger = Logger()
    resolver = PermissionResolver.build(regions, params, logger=logger)
    page_homogeneous = is_page_map_homogeneous(regions, params.page_size)

    app = Flask(__name__)

    @app.route("/api/lookup/<address>")
    def lookup(address: str) -> tuple[Response, int] | Response:  # pyright: ignore[reportUnusedFunction]
        """Return the permissions at *address*.

        Returns:
            JSON with ``address`` and ``homogeneous``, plus the permission
            bits when the address is homogeneous.

        """
        try:
            value = int(address, 0)
        except ValueError:
            return jsonify({"error": f"Invalid address {address!r}"}), _HTTP_BAD_REQUEST
        if value < 0:
            return jsonify({"error": "Address must be non-negative"}), _HTTP_BAD_REQUEST

        result = resolver(value)
        body: dict[str, object] = {"address": f"{value:#x}", "homogeneous": result.homogeneous}
        if isinstance(result, Homogeneous):
            body.update(asdict(result.permissions))
        return jsonify(body)

    @app.route("/api/groups")
    def groups() -> Response:  # pyright: ignore[reportUnusedFunction]
        """Return the permission groups and each bit's decision mask."""
        return jsonify(
            {
                "groups": [
                    {"permissions": str(permissions), "sets": [str(s) for s in sets]}
                    for permissions, sets in resolver.groups.items()
                ],
                "masks": {name: f"{test.decision_mask:#x}" for name, test in resolver.tests.items()},
                "log": logger.dump(),
            }
        )

    @app.route("/api/status")
    def status() -> Response:  # pyright: ignore[reportUnusedFunction]
        """Return page-map homogeneity and the number of regions."""
        return jsonify({"page_homogeneous": page_homogeneous, "regions": len(regions)})

    return app


def main() -> None:
    """Run the inspector development server.

    This is the ``tlb-perms-web`` console entry point.  The memory map
    is read from the JSON file named by ``TLB_PERMS_MAP``.
    """
    path = os.environ.get(MAP_ENV_VAR)
    if not path:
        msg = f"Set {MAP_ENV_VAR} to the path of a JSON memory map"
        raise SystemExit(msg)
    params, regions = load_memory_map(Path(path))
    app = create_app(regions, params)
    app.run(debug=True, port=8080)
