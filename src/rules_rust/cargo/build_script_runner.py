"""
Runs a Cargo build script and translates the `cargo:` directives it prints into files the compile action of the
crate consumes through the process wrapper:

  * the env file holds `KEY=VALUE` lines (`--env-file`)
  * the flags files hold one compiler argument per line (`--arg-file`)
  * the dep env file holds the `DEP_<links>_*` variables passed on to the build scripts of dependent crates

Absolute paths into the exec root are written as `${pwd}` so the files stay valid in other sandboxes.
"""

import argparse
import logging
import os
import shlex
import subprocess
import sys
from pathlib import Path
from typing import Dict, List, NamedTuple, Optional

logger = logging.getLogger(__name__)


class BuildScriptFailed(RuntimeError):
    pass


class BuildScriptOutput(NamedTuple):
    env: List[str]
    flags: List[str]
    link_flags: List[str]
    link_search_paths: List[str]
    dep_env: List[str]
    warnings: List[str]


def _parse_rustc_flags(value: str) -> List[str]:
    flags = []
    words = shlex.split(value)
    i = 0
    while i < len(words):
        word = words[i]
        if word in ("-l", "-L"):
            if i + 1 >= len(words):
                raise BuildScriptFailed(f"cargo:rustc-flags: {word} must be followed by a value")
            flags.append(f"{word}{words[i + 1]}")
            i += 2
        elif word.startswith("-l") or word.startswith("-L"):
            flags.append(word)
            i += 1
        else:
            raise BuildScriptFailed(f"cargo:rustc-flags only supports -l and -L flags, got {word!r}")
    return flags


def parse_build_script_output(stdout: str, *, links: Optional[str] = None, exec_root: Optional[str] = None):
    """
    Interprets the `cargo:` (and `cargo::`) directives of build script output. Directives that only matter to
    Cargo's own change detection (`rerun-if-*`) are ignored.
    """
    output = BuildScriptOutput(env=[], flags=[], link_flags=[], link_search_paths=[], dep_env=[], warnings=[])

    def redact(value: str) -> str:
        if exec_root:
            return value.replace(exec_root, "${pwd}")
        return value

    for line in stdout.splitlines():
        if line.startswith("cargo::"):
            directive = line[len("cargo::") :]
        elif line.startswith("cargo:"):
            directive = line[len("cargo:") :]
        else:
            continue
        key, sep, value = directive.partition("=")
        if not sep:
            continue

        if key == "rustc-env":
            if "=" not in value:
                raise BuildScriptFailed(f"cargo:rustc-env expects KEY=VALUE, got {value!r}")
            output.env.append(redact(value))
        elif key == "rustc-cfg":
            output.flags.append(f"--cfg={value}")
        elif key == "rustc-flags":
            output.flags.extend(redact(flag) for flag in _parse_rustc_flags(value))
        elif key == "rustc-link-lib":
            output.flags.append(f"-l{value}")
        elif key == "rustc-link-search":
            output.link_search_paths.append(f"-L{redact(value)}")
        elif key == "rustc-link-arg":
            output.link_flags.append(f"-Clink-arg={redact(value)}")
        elif key == "warning":
            output.warnings.append(value)
        elif key.startswith("rerun-if-"):
            continue
        elif links:
            # Metadata for the build scripts of packages depending on this one
            if key == "metadata":
                if "=" not in value:
                    raise BuildScriptFailed(f"cargo::metadata expects KEY=VALUE, got {value!r}")
                key, _, value = value.partition("=")
            env_key = f"DEP_{links}_{key}".upper().replace("-", "_")
            output.dep_env.append(f"{env_key}={redact(value)}")
        else:
            logger.debug("ignoring unknown build script directive %r", line)
    return output


def read_dep_env(path: str, exec_root: str) -> Dict[str, str]:
    """
    Reads the `DEP_*` variables a dependency's build script exported, resolving `${pwd}` against `exec_root`
    """
    env = {}
    for line in Path(path).read_text(encoding="utf-8").splitlines():
        if not line:
            continue
        key, sep, value = line.partition("=")
        if not sep:
            raise BuildScriptFailed(f"invalid line {line!r} in {path}, expected KEY=VALUE")
        env[key] = value.replace("${pwd}", exec_root)
    return env


def _symlink_exec_root(exec_root: Path, manifest_dir: Path):
    for entry in exec_root.iterdir():
        link = manifest_dir / entry.name
        if link.exists() or link.is_symlink():
            continue
        link.symlink_to(entry, target_is_directory=entry.is_dir())


def _write_lines(path: Optional[str], lines: List[str]):
    if path is None:
        return
    with open(path, "w", encoding="utf-8") as f:
        f.write("".join(f"{line}\n" for line in lines))


def run_build_script(args) -> BuildScriptOutput:
    exec_root = Path.cwd()
    manifest_dir = (exec_root / args.manifest_dir).resolve()
    out_dir = (exec_root / args.out_dir).resolve()
    out_dir.mkdir(parents=True, exist_ok=True)

    env: Dict[str, str] = {
        **os.environ,
        "OUT_DIR": str(out_dir),
        "CARGO_MANIFEST_DIR": str(manifest_dir),
    }
    if args.rustc:
        env["RUSTC"] = str((exec_root / args.rustc).resolve())
    for dep_env_path in args.input_dep_env_path:
        env.update(read_dep_env(dep_env_path, str(exec_root)))

    if env.get("RULES_RUST_SYMLINK_EXEC_ROOT") == "1":
        _symlink_exec_root(exec_root, manifest_dir)

    script = str((exec_root / args.script).resolve())
    logger.debug("running build script %s in %s", script, manifest_dir)
    result = subprocess.run(
        [script],
        cwd=str(manifest_dir),
        env=env,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        encoding="utf-8",
        errors="replace",
    )
    if args.stdout_file:
        Path(args.stdout_file).write_text(result.stdout, encoding="utf-8")
    if args.stderr_file:
        Path(args.stderr_file).write_text(result.stderr, encoding="utf-8")
    if result.returncode != 0:
        raise BuildScriptFailed(
            f"build script {args.script} failed with exit code {result.returncode}\n"
            f"--stdout:\n{result.stdout}\n--stderr:\n{result.stderr}"
        )

    output = parse_build_script_output(result.stdout, links=args.links, exec_root=str(exec_root))
    for warning in output.warnings:
        print(f"warning: {warning}", file=sys.stderr)

    _write_lines(args.env_out, output.env)
    _write_lines(args.flags_out, output.flags)
    _write_lines(args.link_flags_out, output.link_flags)
    _write_lines(args.link_search_paths_out, output.link_search_paths)
    _write_lines(args.dep_env_out, output.dep_env)
    return output


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="cargo-build-script-runner")
    parser.add_argument("--script", required=True)
    parser.add_argument("--manifest-dir", required=True)
    parser.add_argument("--out-dir", required=True)
    parser.add_argument("--rustc")
    parser.add_argument("--links")
    parser.add_argument("--input-dep-env-path", action="append", default=[])
    parser.add_argument("--env-out")
    parser.add_argument("--flags-out")
    parser.add_argument("--link-flags-out")
    parser.add_argument("--link-search-paths-out")
    parser.add_argument("--dep-env-out")
    parser.add_argument("--stdout-file")
    parser.add_argument("--stderr-file")
    parser.add_argument("--verbose", action="store_true")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)

    try:
        run_build_script(args)
    except (RuntimeError, OSError, ValueError) as ex:
        print(str(ex), file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
