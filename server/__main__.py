"""CLI entrypoint for running the API server."""
from __future__ import annotations

import argparse
import os

from config import API_PORT

from . import create_app


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the make-jam API and jam file server")
    parser.add_argument("--host", default="0.0.0.0", help="Host to bind (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=API_PORT, help=f"Port to bind (default: {API_PORT})")
    parser.add_argument("--debug", action="store_true", help="Enable Flask debug mode")
    args = parser.parse_args()

    app = create_app()

    if not args.debug or os.environ.get("WERKZEUG_RUN_MAIN") == "true":
        print(f"listening on {args.host}:{args.port}", flush=True)

    # Threaded so status polls are served while a make-jam request is in flight.
    app.run(host=args.host, port=args.port, debug=args.debug, threaded=True, use_reloader=False)


if __name__ == "__main__":  # pragma: no cover
    main()
