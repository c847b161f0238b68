from ..attribute import Attribute, FileAttribute, FileListAttribute, StringAttribute, StringListAttribute
from ..config import target_triple
from ..depset import Depset
from ..exec import Executable
from ..provider import DefaultInfo
from ..rule import Rule
from .providers import RustfmtToolchain, RustToolchain

_EDITIONS = ("2015", "2018", "2021", "2024")


def _binary_ext(triple: str) -> str:
    if "windows" in triple:
        return ".exe"
    elif triple.startswith("wasm32"):
        return ".wasm"
    return ""


def _dylib_ext(triple: str) -> str:
    if "windows" in triple:
        return ".dll"
    elif "apple" in triple:
        return ".dylib"
    elif triple.startswith("wasm32"):
        return ".wasm"
    return ".so"


def _staticlib_ext(triple: str) -> str:
    if "windows" in triple:
        return ".lib"
    return ".a"


def _stdlib_linkflags(triple: str):
    if "linux" in triple:
        return ["-ldl", "-lpthread", "-lm"]
    elif "apple" in triple:
        return ["-lSystem", "-lresolv"]
    elif "windows" in triple:
        return ["advapi32.lib", "ws2_32.lib", "userenv.lib", "bcrypt.lib", "ntdll.lib"]
    return []


class RustToolchainRule(Rule):
    """
    Declares a Rust toolchain from prebuilt tool files. The target triple defaults to the one of the configuration
    the toolchain is analyzed in.
    """

    rustc = FileAttribute()
    rustdoc = FileAttribute(default=None)
    clippy_driver = FileAttribute(default=None)
    rust_std = FileListAttribute(default=[])
    rustc_lib = FileListAttribute(default=[])

    target_triple = StringAttribute(default=None)
    exec_triple = StringAttribute(default=None)
    default_edition = StringAttribute(default="2021")

    opt_level = Attribute(default={"fastbuild": "0", "dbg": "0", "opt": "3"})
    debug_info = Attribute(default={"fastbuild": "0", "dbg": "2", "opt": "0"})
    extra_rustc_flags = StringListAttribute(default=[])
    stdlib_linkflags = StringListAttribute(default=None)

    def analyze(self):
        if self.default_edition not in _EDITIONS:
            editions = ", ".join(_EDITIONS)
            raise ValueError(f"invalid default_edition {self.default_edition!r}, expected one of {editions}")
        for mode in ("fastbuild", "dbg", "opt"):
            if mode not in self.opt_level or mode not in self.debug_info:
                raise ValueError(f"opt_level and debug_info must have an entry for compilation mode {mode!r}")

        triple = self.target_triple or target_triple(self.build_config)
        exec_triple = self.exec_triple or target_triple(self.build_config.exec_config())

        rustc_lib = Depset(self.rustc_lib)
        rust_std = Depset(self.rust_std)

        toolchain = RustToolchain(
            rustc=Executable.from_file(self.rustc, name="rustc", extra_files=rustc_lib),
            rustdoc=Executable.from_file(self.rustdoc, name="rustdoc", extra_files=rustc_lib) if self.rustdoc else None,
            clippy_driver=(
                Executable.from_file(self.clippy_driver, name="clippy-driver", extra_files=rustc_lib)
                if self.clippy_driver
                else None
            ),
            rust_std=rust_std,
            rustc_lib=rustc_lib,
            target_triple=triple,
            exec_triple=exec_triple,
            default_edition=self.default_edition,
            binary_ext=_binary_ext(triple),
            dylib_ext=_dylib_ext(triple),
            staticlib_ext=_staticlib_ext(triple),
            opt_level=dict(self.opt_level),
            debug_info=dict(self.debug_info),
            extra_rustc_flags=list(self.extra_rustc_flags),
            stdlib_linkflags=(
                list(self.stdlib_linkflags) if self.stdlib_linkflags is not None else _stdlib_linkflags(triple)
            ),
        )
        return [toolchain, DefaultInfo(files=toolchain.all_files)]


class RustfmtToolchainRule(Rule):
    rustfmt = FileAttribute()
    rustc_lib = FileListAttribute(default=[])

    def analyze(self):
        rustfmt = Executable.from_file(self.rustfmt, name="rustfmt", extra_files=Depset(self.rustc_lib))
        return [RustfmtToolchain(rustfmt=rustfmt), DefaultInfo(files=rustfmt.files)]
