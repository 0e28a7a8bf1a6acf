from __future__ import annotations

import argparse
import logging

import uvicorn

from creative_canvas.config import settings


def main() -> None:
    parser = argparse.ArgumentParser(prog="creative_canvas", description="Serve the creative canvas API.")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--reload", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run("creative_canvas.api.app:app", host=args.host, port=args.port, reload=args.reload)


if __name__ == "__main__":
    main()
