"""Entry point for the PDF assembly server."""

import argparse
import os

import uvicorn


def main():
    parser = argparse.ArgumentParser(description="PDF assembly server")
    parser.add_argument(
        "--preview-dpi",
        type=int,
        default=None,
        help="Resolution of page previews (default: 72). Overrides PREVIEW_DPI env var.",
    )
    parser.add_argument(
        "--strict-missing-files",
        action="store_true",
        help="Fail exports that reference removed files instead of dropping their pages.",
    )
    parser.add_argument("--host", default="0.0.0.0", help="Bind host (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    args = parser.parse_args()

    # Settings are read at import time, so set them before importing the app
    if args.preview_dpi:
        os.environ["PREVIEW_DPI"] = str(args.preview_dpi)
    if args.strict_missing_files:
        os.environ["EXPORT_STRICT_MISSING_FILES"] = "true"

    from pdf_assembler.server import app

    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
