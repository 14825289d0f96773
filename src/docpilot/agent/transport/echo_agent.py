"""Local demo agent for direct-process transport integration tests."""

from __future__ import annotations

import argparse
import os
import sys
import time
from pathlib import Path


def main(argv: list[str] | None = None) -> int:
    """Echo the prompt from stdin back to stdout in chunks."""

    parser = argparse.ArgumentParser()
    parser.add_argument("--chunks", type=int, default=3)
    parser.add_argument("--delay", type=float, default=0.0)
    parser.add_argument("--exit-code", type=int, default=0)
    parser.add_argument("--error-message", default="")
    parser.add_argument(
        "--replace",
        nargs=2,
        metavar=("OLD", "NEW"),
        default=None,
        help="Replace OLD with NEW in the file named by DOCPILOT_TARGET.",
    )
    args, _ = parser.parse_known_args(argv)

    prompt = sys.stdin.read()
    text = prompt.strip() or "echo"
    size = max(1, -(-len(text) // max(1, args.chunks)))
    for start in range(0, len(text), size):
        sys.stdout.write(text[start : start + size])
        sys.stdout.flush()
        if args.delay:
            time.sleep(args.delay)

    target = os.getenv("DOCPILOT_TARGET")
    if args.replace is not None and target:
        path = Path(target)
        old, new = args.replace
        path.write_text(path.read_text("utf-8").replace(old, new), "utf-8")

    if args.error_message:
        sys.stderr.write(args.error_message)
        sys.stderr.flush()
    return args.exit_code


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
