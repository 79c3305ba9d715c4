"""
dsstore-dump — DS_Store Metadata Reader
=======================================
Entry point: reads a .DS_Store file and prints its records.

Usage:
    python main.py [options] PATH

Options:
    --help              Show help
    --mode M            Output mode: table, vertical, raw, json (default: table)
    --json              Same as --mode json
    --workers N         Decode root subtrees on N threads
    --verbose           Debug logging on stderr

Exit codes:
    0  all records decoded
    1  file unreadable, bad header, or bad options
    2  records printed, but some subtrees were corrupt
"""

import logging
import sys

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_CORRUPT = 2

logger = logging.getLogger(__name__)


def print_help():
    print("""
dsstore-dump — DS_Store Metadata Reader

Usage:
    python main.py [options] PATH

Options:
    --help          Show this help
    --mode M        Output mode: table, vertical, raw, json
    --json          Same as --mode json
    --workers N     Decode root subtrees on N threads (default: 1)
    --verbose       Debug logging on stderr
""")


def dump_file(path: str, mode: str = "table", workers: int = 1,
              output=None) -> int:
    """Decode one file and render it. Returns the process exit code."""
    from catalog.model import DirectoryModel
    from cli.renderer import Renderer
    from storage.errors import DSStoreError

    renderer = Renderer(output)
    renderer.mode = mode

    try:
        with open(path, "rb") as f:
            data = f.read()
    except OSError as e:
        print(f"Error: cannot read {path}: {e}", file=sys.stderr)
        return EXIT_FATAL

    try:
        model = DirectoryModel.from_bytes(data, workers=workers)
    except DSStoreError as e:
        renderer.render_error(e)
        return EXIT_FATAL

    renderer.render_model(model)
    return EXIT_CORRUPT if model.has_corruption else EXIT_OK


def main(argv=None) -> int:
    """Parse CLI arguments and dispatch."""
    from cli.renderer import MODES

    args = sys.argv[1:] if argv is None else list(argv)

    if "--help" in args or "-h" in args:
        print_help()
        return EXIT_OK

    path = None
    mode = "table"
    workers = 1
    verbose = False

    i = 0
    while i < len(args):
        if args[i] == "--mode" and i + 1 < len(args):
            mode = args[i + 1]
            i += 2
        elif args[i] == "--json":
            mode = "json"
            i += 1
        elif args[i] == "--workers" and i + 1 < len(args):
            try:
                workers = int(args[i + 1])
            except ValueError:
                print(f"Invalid worker count: {args[i + 1]}", file=sys.stderr)
                return EXIT_FATAL
            i += 2
        elif args[i] == "--verbose":
            verbose = True
            i += 1
        elif args[i].startswith("-"):
            print(f"Unknown option: {args[i]}", file=sys.stderr)
            print_help()
            return EXIT_FATAL
        else:
            path = args[i]
            i += 1

    if mode not in MODES:
        print(f"Unknown mode: {mode} (expected one of {', '.join(MODES)})",
              file=sys.stderr)
        return EXIT_FATAL

    if path is None:
        print("Error: no input file given", file=sys.stderr)
        print_help()
        return EXIT_FATAL

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    logger.debug("Reading %s (mode=%s, workers=%d)", path, mode, workers)
    return dump_file(path, mode=mode, workers=workers)


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
