import re
from typing import Optional, Sequence, Tuple

from ..artifact import File
from ..label import Label

_CRATE_NAME_REGEX = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")


def name_to_crate_name(name: str) -> str:
    """
    Converts a target name into a crate name, e.g. `foo-bar/baz` becomes `foo_bar_baz`
    """
    return name.replace("-", "_").replace("/", "_")


def validate_crate_name(crate_name: str) -> str:
    if not _CRATE_NAME_REGEX.match(crate_name):
        raise ValueError(
            f"crate name {crate_name!r} is not valid: crate names may only contain ASCII letters, digits and "
            f"underscores, and may not start with a digit"
        )
    return crate_name


def crate_name_for(label: Label, crate_name: Optional[str] = None) -> str:
    if crate_name:
        return validate_crate_name(crate_name)
    return validate_crate_name(name_to_crate_name(label.name))


def crate_root_src(name: str, srcs: Sequence[File], crate_type: str, crate_root: Optional[File] = None) -> File:
    """
    Determines the source file the compiler starts from: an explicit `crate_root`, a conventional `lib.rs` or
    `main.rs` (or `<name>.rs`), or the only source file
    """
    if crate_root is not None:
        return crate_root
    default_name = "main.rs" if crate_type == "bin" else "lib.rs"
    for candidate in (default_name, f"{name_to_crate_name(name)}.rs"):
        matching = [src for src in srcs if src.basename == candidate]
        if matching:
            return matching[0]
    if len(srcs) == 1:
        return srcs[0]
    raise RuntimeError(
        f"could not determine the crate root of {name!r}: expected a crate_root attribute, a source named "
        f"{default_name} or a single source file"
    )


def string_hash(value: str) -> int:
    """
    A stable 32 bit hash of a string, equal to `String.hashCode` in Java
    """
    h = 0
    for char in value:
        h = (31 * h + ord(char)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return h


def determine_output_hash(crate_root: File, label: Label) -> str:
    # The sum of two hashes may be negative
    h = abs(string_hash(crate_root.path) + string_hash(str(label)))
    return repr(h)


def triple_os_arch(triple: str) -> Tuple[str, str]:
    """
    The values of `target_os` and `target_arch` cfgs for a target triple
    """
    parts = triple.split("-")
    arch = parts[0]
    if "linux" in parts:
        os = "linux"
    elif "darwin" in parts:
        os = "macos"
    elif "windows" in parts:
        os = "windows"
    elif "wasi" in parts:
        os = "wasi"
    else:
        os = "none"
    return os, arch


def is_link_crate_type(crate_type: str) -> bool:
    return crate_type in ("bin", "proc-macro", "dylib", "cdylib", "staticlib")
