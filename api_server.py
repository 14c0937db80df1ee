#!/usr/bin/env python3
"""
Read-only HTTP API over the latest stored inventory snapshot.

Endpoints:
  GET /                          liveness banner
  GET /api/inventory             newest record per product alias
  GET /api/inventory/<alias>     newest record for one alias (404 if unknown)
  GET /api/debug                 whether the responses directory exists
"""

from __future__ import annotations

import argparse
import logging
from typing import Any, Dict, List, Optional, Sequence

from flask import Flask, jsonify

from config import DEFAULT_PRODUCT_ALIAS, load_settings
from inventory import unique_latest, utc_now_iso
from logging_utils import setup_logging
from snapshot_store import SnapshotStore

logger = logging.getLogger(__name__)


def sample_data() -> List[Dict[str, Any]]:
    return [
        {
            "alias": DEFAULT_PRODUCT_ALIAS,
            "inventory_quantity": 0,
            "name": "Amul High Protein Milk, 250 mL | Pack of 32",
            "timestamp": utc_now_iso(),
        }
    ]


def create_app(store: SnapshotStore, *, demo_mode: bool = False) -> Flask:
    """Create the Flask application serving `store`."""
    app = Flask(__name__)

    def load_items() -> List[Dict[str, Any]]:
        try:
            return store.read_all()
        except OSError as e:
            logger.warning(f"Could not access response files: {e}")
            return []

    @app.route("/")
    def index():
        return "API Server is running. Try /api/inventory endpoint.", 200, {"Content-Type": "text/plain; charset=utf-8"}

    @app.route("/api/debug")
    def debug():
        try:
            return jsonify({"responsesDirExists": store.exists()})
        except Exception:
            logger.exception("Error fetching debug information")
            return jsonify({"error": "Failed to fetch debug information"}), 500

    @app.route("/api/inventory")
    def inventory():
        logger.info("GET /api/inventory")
        try:
            items = load_items()
            if not items or demo_mode:
                logger.info("Using sample data for inventory")
                items = sample_data()

            products = unique_latest(items)
            return jsonify(
                {
                    "timestamp": utc_now_iso(),
                    "totalProducts": len(products),
                    "products": products,
                }
            )
        except Exception as e:
            logger.exception("Error fetching inventory data")
            return jsonify({"error": "Failed to fetch inventory data", "message": str(e)}), 500

    @app.route("/api/inventory/<alias>")
    def product(alias: str):
        try:
            matches = [item for item in load_items() if item.get("alias") == alias]
            if not matches or demo_mode:
                sample = [item for item in sample_data() if item["alias"] == alias]
                if sample:
                    logger.info(f"Using sample data for product: {alias}")
                    matches = sample

            latest = unique_latest(matches)
            if not latest:
                return jsonify({"error": f"No data found for product: {alias}"}), 404

            return jsonify({"timestamp": utc_now_iso(), "product": latest[0]})
        except Exception:
            logger.exception(f"Error fetching product data for {alias}")
            return jsonify({"error": "Failed to fetch product data"}), 500

    return app


def main(argv: Optional[Sequence[str]] = None) -> int:
    settings = load_settings()

    parser = argparse.ArgumentParser(description="Amul inventory query API")
    parser.add_argument("--host", default="0.0.0.0", help="Listen address")
    parser.add_argument("--port", type=int, default=settings.port, help=f"Listen port (default: PORT or {settings.port})")
    parser.add_argument("--debug", action="store_true", help="Enable Flask debug mode")
    args = parser.parse_args(argv)

    setup_logging(level=settings.log_level, log_file=settings.log_file)

    app = create_app(SnapshotStore(settings.responses_dir), demo_mode=settings.demo_mode)
    logger.info(f"API Server running at http://{args.host}:{args.port} (demo_mode={settings.demo_mode})")
    logger.info("  GET /api/inventory - All inventory data grouped by product")
    logger.info("  GET /api/inventory/<alias> - Data for a specific product")
    logger.info("  GET /api/debug - Debug information about the responses directory")
    try:
        app.run(host=args.host, port=args.port, debug=args.debug)
    except OSError as e:
        logger.error(f"Cannot listen on port {args.port}: {e}")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
