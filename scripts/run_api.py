#!/usr/bin/env python3
"""
Start the analyzer API (HTTP + WebSocket) with uvicorn.
"""

import argparse
import sys
from pathlib import Path

# Add the parent directory to sys.path to import our modules
sys.path.insert(0, str(Path(__file__).parent.parent))

import uvicorn

from flag_impact.core.config import API_HOST, API_PORT, debug_enabled


def main():
    parser = argparse.ArgumentParser(description="Run the feature flag impact analyzer API")
    parser.add_argument("--host", default=API_HOST, help=f"Bind address (default: {API_HOST})")
    parser.add_argument("--port", type=int, default=API_PORT, help=f"Port (default: {API_PORT})")
    parser.add_argument("--reload", action="store_true", help="Reload on code changes")
    args = parser.parse_args()

    uvicorn.run(
        "flag_impact.api.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level="debug" if debug_enabled() else "info",
    )


if __name__ == "__main__":
    main()
