"""
Runs a Protobuf compiler configured for prost (and optionally tonic) output, then combines everything it generated
into a single `lib.rs` whose modules mirror the proto packages, e.g. for `package examples.prost.helloworld;`:

    pub mod examples {
      pub mod prost {
        pub mod helloworld {
          ...
        }
      }
    }

It also writes the package info file for the library: one `--extern_path` mapping per message type, which the
libraries depending on this one pass back to prost so they reference these types instead of regenerating them.
"""

import logging
import subprocess
import sys
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set

logger = logging.getLogger(__name__)


class ProtocWrapperError(RuntimeError):
    pass


class Args:
    def __init__(self):
        self.protoc: Optional[str] = None
        self.out_dir: Optional[str] = None
        self.crate_name: Optional[str] = None
        self.package_info_file: Optional[str] = None
        self.proto_files: List[str] = []
        self.includes: List[str] = []
        self.out_librs: Optional[str] = None
        self.rustfmt: Optional[str] = None
        self.proto_paths: List[str] = []
        self.is_tonic = False
        # Passed through to protoc untouched
        self.extra_args: List[str] = []


def _read_deps_info(path: str) -> List[str]:
    args = []
    for line in Path(path).read_text(encoding="utf-8").splitlines():
        package_info_path = line.strip()
        if not package_info_path:
            continue
        for extern_path in Path(package_info_path).read_text(encoding="utf-8").splitlines():
            if extern_path.strip():
                args.append(f"--prost_opt=extern_path={extern_path.strip()}")
    return args


def parse_args(argv: Iterable[str]) -> Args:
    """
    Splits the command line into the values the wrapper needs and the arguments it forwards to protoc. Positional
    arguments are the proto files to compile.
    """
    args = Args()

    for arg in argv:
        if not arg.startswith("-"):
            args.proto_files.append(arg)
            continue
        if arg.startswith("-I"):
            args.includes.append(arg[len("-I") :])
            continue
        if arg == "--is_tonic":
            args.is_tonic = True
            continue
        if "=" not in arg:
            args.extra_args.append(arg)
            continue

        key, value = arg.split("=", 1)
        if key in ("--prost_out", "--tonic_out"):
            args.out_dir = value
        elif key == "--protoc":
            args.protoc = value
        elif key == "--crate_name":
            args.crate_name = value
        elif key == "--package_info_output":
            if "=" not in value:
                raise ProtocWrapperError(f"Failed to parse package info output {value!r}, expected CRATE=PATH")
            args.crate_name, args.package_info_file = value.split("=", 1)
        elif key == "--deps_info":
            args.extra_args += _read_deps_info(value)
        elif key == "--out_librs":
            args.out_librs = value
        elif key == "--rustfmt":
            args.rustfmt = value
        elif key == "--proto_path":
            args.proto_paths.append(value)
        else:
            args.extra_args.append(arg)

    if args.protoc is None:
        raise ProtocWrapperError("No `--protoc` value was found. Unable to parse path to proto compiler.")
    if args.out_dir is None:
        raise ProtocWrapperError("No `--prost_out` value was found. Unable to parse output directory.")
    if args.crate_name is None:
        raise ProtocWrapperError(
            "No `--package_info_output` value was found. Unable to parse target crate name."
        )
    if args.package_info_file is None:
        raise ProtocWrapperError(
            "No `--package_info_output` value was found. Unable to parse package info output file."
        )
    if args.out_librs is None:
        raise ProtocWrapperError(
            "No `--out_librs` value was found. Unable to parse the output location for all combined prost outputs."
        )
    return args


def find_generated_rust_files(out_dir: Path) -> List[Path]:
    """
    Locates the prost outputs below `out_dir`. prost names the output for protos without a package `_`, which is
    renamed to `_.rs`.
    """
    rust_files = set()
    for path in out_dir.iterdir():
        if path.is_dir():
            rust_files.update(find_generated_rust_files(path))
        elif path.suffix == ".rs":
            rust_files.add(path)
        elif path.name == "_":
            rs_path = path.parent / "_.rs"
            path.rename(rs_path)
            rust_files.add(rs_path)
    return sorted(rust_files)


def merge_tonic_outputs(out_dir: Path):
    """
    Not every proto produces both a `.rs` and a `.tonic.rs` file (only protos with services get the latter). To keep
    the outputs consistent, each `.rs` file is prepended to its `.tonic.rs` file or renamed to one if it has none.
    """
    for path in find_generated_rust_files(out_dir):
        if path.name.endswith(".tonic.rs"):
            rs_path = path.with_name(path.name[: -len(".tonic.rs")] + ".rs")
            if rs_path.exists():
                rs_content = rs_path.read_text(encoding="utf-8")
                tonic_content = path.read_text(encoding="utf-8")
                path.write_text(f"{rs_content}\n{tonic_content}", encoding="utf-8")
                rs_path.unlink()
        else:
            tonic_path = path.with_name(path.name[: -len(".rs")] + ".tonic.rs")
            if tonic_path.exists():
                continue
            path.rename(tonic_path)


class _Module:
    def __init__(self, name: str, contents: str = ""):
        self.name = name
        self.contents = contents
        self.submodules: Set[str] = set()


def _module_name(path: Path, is_tonic: bool) -> str:
    package = path.name[: -len(".rs")]
    if is_tonic:
        if not package.endswith(".tonic"):
            raise ProtocWrapperError(f"expected a .tonic.rs file, got {path}")
        package = package[: -len(".tonic")]
    return package.lower()


def generate_lib_rs(rust_files: Iterable[Path], is_tonic: bool) -> str:
    modules: Dict[str, _Module] = {}

    for path in rust_files:
        module_name = _module_name(path, is_tonic)
        if not module_name:
            continue

        contents = path.read_text(encoding="utf-8")
        existing = modules.get(module_name)
        if existing is not None:
            existing.contents = contents
        else:
            modules[module_name] = _Module(module_name.rsplit(".", 1)[-1], contents)

        parts = module_name.split(".")
        for i in range(len(parts) - 1):
            parent_name = ".".join(parts[: i + 1])
            parent = modules.get(parent_name)
            if parent is None:
                parent = modules[parent_name] = _Module(parts[i])
            parent.submodules.add(parts[i + 1])

    content = "// @generated\n\n"
    for module_name in sorted(modules):
        if "." not in module_name:
            content += _render_module(modules, module_name, 1)
    return content


def _render_module(modules: Dict[str, _Module], module_name: str, depth: int) -> str:
    module = modules[module_name]
    indent = "  " * depth
    # Protos without a package are written at the root of the crate
    is_rust_module = module.name != "_"

    content = ""
    if is_rust_module:
        content += f"{indent}pub mod {module.name} {{\n"
    content += module.contents
    for submodule in sorted(module.submodules):
        content += _render_module(modules, f"{module_name}.{submodule}", depth + 1)
    if is_rust_module:
        content += f"{indent}}}\n"
    return content


def create_free_field_numbers_map(
    proto_files: Iterable[str], protoc: str, includes: List[str], proto_paths: List[str]
) -> Dict[str, str]:
    """
    Runs `protoc --print_free_field_numbers` for every proto file, which conveniently lists every message type the
    file defines
    """
    free_field_numbers = {}
    for proto_file in sorted(set(proto_files)):
        result = subprocess.run(
            [
                protoc,
                *(f"-I{include}" for include in includes),
                "--print_free_field_numbers",
                *(f"--proto_path={proto_path}" for proto_path in proto_paths),
                proto_file,
            ],
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            encoding="utf-8",
            errors="replace",
        )
        if result.returncode != 0:
            raise ProtocWrapperError(f"Failed to run protoc: {result.stderr}")
        free_field_numbers[proto_file] = result.stdout
    return free_field_numbers


def compute_proto_package_info(free_field_numbers: Dict[str, str], crate_name: str) -> List[str]:
    """
    Converts the message types listed by protoc into `--extern_path` values, e.g.
    `.example.prost.helloworld.HelloRequest=crate_name::example::prost::helloworld::HelloRequest`
    """
    extern_paths = set()
    for stdout in free_field_numbers.values():
        for line in stdout.splitlines():
            text = line.strip()
            if not text:
                continue
            absolute = text.split(" ", 1)[0]
            package, _, symbol_name = absolute.rpartition(".")
            symbol = f"{package.replace('.', '::')}::{symbol_name}"
            extern_path = f".{absolute}={crate_name}::{symbol.strip(':')}"
            if extern_path in extern_paths:
                raise ProtocWrapperError(f"Duplicate extern: {extern_path}")
            extern_paths.add(extern_path)
    return sorted(extern_paths)


def run(args: Args):
    out_dir = Path(args.out_dir)

    cmd = [args.protoc, f"--prost_out={args.out_dir}"]
    if args.is_tonic:
        cmd.append(f"--tonic_out={args.out_dir}")
    cmd += args.extra_args
    cmd += [f"--proto_path={proto_path}" for proto_path in args.proto_paths]
    cmd += [f"-I{include}" for include in args.includes]
    cmd += args.proto_files

    logger.debug("running %s", cmd)
    result = subprocess.run(cmd)
    if result.returncode != 0:
        raise ProtocWrapperError(f"protoc failed with status: {result.returncode}")

    if args.is_tonic:
        merge_tonic_outputs(out_dir)

    rust_files = find_generated_rust_files(out_dir)
    if not rust_files:
        raise ProtocWrapperError("No .rs files were generated by prost.")

    free_field_numbers = create_free_field_numbers_map(args.proto_files, args.protoc, args.includes, args.proto_paths)
    package_info = compute_proto_package_info(free_field_numbers, args.crate_name)

    Path(args.out_librs).write_text(generate_lib_rs(rust_files, args.is_tonic), encoding="utf-8")
    Path(args.package_info_file).write_text("\n".join(package_info), encoding="utf-8")

    if args.rustfmt:
        fmt_result = subprocess.run([args.rustfmt, "--edition", "2021", "--quiet", args.out_librs])
        if fmt_result.returncode != 0:
            raise ProtocWrapperError(f"rustfmt failed with exit code: {fmt_result.returncode}")


def main(argv=None):
    logging.basicConfig(level=logging.WARNING)

    try:
        run(parse_args(sys.argv[1:] if argv is None else argv))
    except (RuntimeError, OSError, ValueError) as ex:
        print(str(ex), file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
