import argparse
import logging
import sys
from pathlib import Path

from .analysis import AnalysisHost
from .config import BuildConfig
from .rust.clippy import ClippyAspect
from .rust.expand import RustExpandAspect
from .rust.rustfmt import RustfmtAspect
from .workspace import Workspace

logger = logging.getLogger(__name__)

ASPECTS = {
    "expand": RustExpandAspect,
    "rustfmt": RustfmtAspect,
    "clippy": ClippyAspect,
}


def analyze(args):
    workspace = Workspace.from_directory(Path(args.workspace))
    build_config = BuildConfig.from_toml(args.config) if args.config else BuildConfig()
    aspects = [ASPECTS[name] for name in args.aspect]

    host = AnalysisHost(workspace, build_config)
    result = host.analyze(args.label, aspects=aspects)
    logger.info("analyzed %s: %d actions", result.label, len(result.actions))

    if args.output_groups:
        for group in args.output_groups.split(","):
            for file in result.output_group(group):
                print(file.path)
    else:
        print(result.dumps())


def main(argv=None):
    parser = argparse.ArgumentParser(prog="rules-rust")
    parser.add_argument("--verbose", "-v", action="store_true")
    subparsers = parser.add_subparsers(dest="command", required=True)

    analyze_parser = subparsers.add_parser("analyze", help="analyze a target and print its actions")
    analyze_parser.add_argument("label")
    analyze_parser.add_argument("--workspace", default=".", help="directory containing the BUILD.py files")
    analyze_parser.add_argument("--config", help="TOML build configuration")
    analyze_parser.add_argument("--aspect", action="append", default=[], choices=sorted(ASPECTS))
    analyze_parser.add_argument("--output-groups", help="comma separated output groups to print instead of actions")

    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)

    try:
        if args.command == "analyze":
            analyze(args)
    except (RuntimeError, ValueError, TypeError, OSError) as ex:
        print(str(ex), file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
