from typing import Dict, List, Optional

from ..artifact import File
from ..cc import CcInfo
from ..depset import Depset
from ..exec import Executable
from ..label import Label
from ..provider import Field, Provider


class CrateInfo(Provider):
    name = Field(str)
    # One of "rlib", "lib", "bin", "proc-macro"
    type = Field(str)
    root = Field(File)
    srcs = Field(Depset)
    deps = Field(Depset)
    proc_macro_deps = Field(Depset, default=Depset())
    aliases = Field(Dict[Label, str], default={})
    output = Field(File)
    metadata = Field(Optional[File], default=None)
    edition = Field(str)
    is_test = Field(bool, default=False)
    rustc_env = Field(Dict[str, str], default={})
    compile_data = Field(Depset, default=Depset())
    owner = Field(Label)


class AliasableDep(Provider):
    """
    A direct crate dependency together with the name it is imported under
    """

    name = Field(str)
    dep = Field(CrateInfo)


class BuildInfo(Provider):
    out_dir = Field(Optional[File], default=None)
    rustc_env = Field(Optional[File], default=None)
    flags = Field(Optional[File], default=None)
    link_flags = Field(Optional[File], default=None)
    link_search_paths = Field(Optional[File], default=None)
    # `DEP_<links>_*` variables for the build scripts of dependent crates
    dep_env = Field(Optional[File], default=None)
    compile_data = Field(Depset, default=Depset())


class DepInfo(Provider):
    direct_crates = Field(Depset)
    transitive_crates = Field(Depset)
    transitive_crate_outputs = Field(Depset)
    transitive_metadata_outputs = Field(Depset)
    transitive_noncrates = Field(Depset)
    transitive_build_infos = Field(Depset)
    link_search_path_files = Field(Depset, default=Depset())
    dep_env = Field(Optional[File], default=None)


class DepVariantInfo(Provider):
    """
    Everything needed to depend on one crate, used where a single target stands for several crates
    """

    crate_info = Field(Optional[CrateInfo], default=None)
    dep_info = Field(Optional[DepInfo], default=None)
    cc_info = Field(Optional[CcInfo], default=None)
    build_info = Field(Optional[BuildInfo], default=None)


class CrateGroupInfo(Provider):
    dep_variant_infos = Field(Depset)


class RustToolchain(Provider):
    rustc = Field(Executable)
    rustdoc = Field(Optional[Executable], default=None)
    clippy_driver = Field(Optional[Executable], default=None)
    rust_std = Field(Depset, default=Depset())
    rustc_lib = Field(Depset, default=Depset())

    target_triple = Field(str)
    exec_triple = Field(str)
    default_edition = Field(str, default="2021")

    binary_ext = Field(str, default="")
    dylib_ext = Field(str, default=".so")
    staticlib_ext = Field(str, default=".a")

    # Per compilation mode ("fastbuild", "dbg", "opt")
    opt_level = Field(Dict[str, str], default={"fastbuild": "0", "dbg": "0", "opt": "3"})
    debug_info = Field(Dict[str, str], default={"fastbuild": "0", "dbg": "2", "opt": "0"})

    extra_rustc_flags = Field(List[str], default=[])
    stdlib_linkflags = Field(List[str], default=[])

    @property
    def all_files(self) -> Depset:
        return Depset(transitive=[self.rustc.files, self.rust_std, self.rustc_lib])

    @property
    def sysroot_lib_dirs(self) -> List[str]:
        dirs = []
        for file in self.rust_std.to_list():
            if file.dirname not in dirs:
                dirs.append(file.dirname)
        return dirs


class RustfmtToolchain(Provider):
    rustfmt = Field(Executable)

    @property
    def all_files(self) -> Depset:
        return self.rustfmt.files
