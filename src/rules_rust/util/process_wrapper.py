"""
Wraps the tools run by compile and lint actions:

    rules-rust-process-wrapper [options] -- TOOL [ARGS...]

`--env-file` and `--arg-file` add environment variables and arguments read from files produced by other actions
(build scripts). `--subst KEY=VALUE` replaces `${KEY}` in the tool's arguments and environment, where the value
`${pwd}` stands for the directory the wrapper runs in. The tool's exit code is the wrapper's exit code.
"""

import argparse
import logging
import os
import subprocess
import sys
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)


class ProcessWrapperError(RuntimeError):
    pass


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="rules-rust-process-wrapper")
    parser.add_argument("--subst", action="append", default=[], metavar="KEY=VALUE")
    parser.add_argument("--env-file", action="append", default=[])
    parser.add_argument("--arg-file", action="append", default=[])
    parser.add_argument("--stdout-file")
    parser.add_argument("--stderr-file")
    parser.add_argument("--touch-file")
    parser.add_argument("--verbose", action="store_true")
    return parser


def split_command_line(argv: Sequence[str]) -> Tuple[List[str], List[str]]:
    argv = list(argv)
    try:
        separator = argv.index("--")
    except ValueError:
        raise ProcessWrapperError("expected `--` followed by the command to run") from None
    command = argv[separator + 1 :]
    if not command:
        raise ProcessWrapperError("no command given after `--`")
    return argv[:separator], command


def parse_substitutions(values: Sequence[str], pwd: str) -> Dict[str, str]:
    substitutions = {}
    for value in values:
        key, sep, replacement = value.partition("=")
        if not sep or not key:
            raise ProcessWrapperError(f"invalid substitution {value!r}, expected KEY=VALUE")
        substitutions[key] = replacement.replace("${pwd}", pwd)
    return substitutions


def substitute(value: str, substitutions: Dict[str, str]) -> str:
    for key, replacement in substitutions.items():
        value = value.replace("${" + key + "}", replacement)
    return value


def read_env_file(path: str, substitutions: Dict[str, str]) -> Dict[str, str]:
    env = {}
    for line in Path(path).read_text(encoding="utf-8").splitlines():
        if not line:
            continue
        key, sep, value = line.partition("=")
        if not sep:
            raise ProcessWrapperError(f"invalid line {line!r} in env file {path}, expected KEY=VALUE")
        env[key] = substitute(value, substitutions)
    return env


def read_arg_file(path: str, substitutions: Dict[str, str]) -> List[str]:
    return [substitute(line, substitutions) for line in Path(path).read_text(encoding="utf-8").splitlines() if line]


def run(options, command: List[str], *, pwd: Optional[str] = None) -> int:
    pwd = pwd or os.getcwd()
    substitutions = parse_substitutions(options.subst, pwd)

    env = dict(os.environ)
    for env_file in options.env_file:
        env.update(read_env_file(env_file, substitutions))
    env = {k: substitute(v, substitutions) for k, v in env.items()}

    args = [substitute(arg, substitutions) for arg in command]
    for arg_file in options.arg_file:
        args += read_arg_file(arg_file, substitutions)

    logger.debug("running %s", args)
    stdout = open(options.stdout_file, "wb") if options.stdout_file else None
    stderr = open(options.stderr_file, "wb") if options.stderr_file else None
    try:
        result = subprocess.run(args, env=env, stdout=stdout, stderr=stderr)
    finally:
        if stdout is not None:
            stdout.close()
        if stderr is not None:
            stderr.close()

    if result.returncode == 0 and options.touch_file:
        Path(options.touch_file).touch()
    return result.returncode


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv

    try:
        wrapper_args, command = split_command_line(argv)
        options = build_parser().parse_args(wrapper_args)
        logging.basicConfig(level=logging.DEBUG if options.verbose else logging.WARNING)
        returncode = run(options, command)
    except (RuntimeError, OSError, ValueError) as ex:
        print(str(ex), file=sys.stderr)
        sys.exit(1)
    sys.exit(returncode)


if __name__ == "__main__":
    main()
