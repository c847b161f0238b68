from typing import Dict, List, Optional

from ..artifact import File
from ..attribute import (
    FileAttribute,
    FileListAttribute,
    StringAttribute,
    StringDictAttribute,
    StringListAttribute,
    TargetAttribute,
    TargetListAttribute,
    ToolchainAttribute,
)
from ..depset import Depset
from ..label import Label
from ..rule import Rule
from .providers import CrateInfo, RustToolchain
from .rustc import dep_variant_infos, rustc_compile_action
from .utils import crate_name_for, crate_root_src, determine_output_hash


class _RustCrateRule(Rule):
    srcs = FileListAttribute(allow_files=[".rs"])
    crate_root = FileAttribute(allow_files=[".rs"], default=None)
    crate_name = StringAttribute(default=None)
    crate_features = StringListAttribute(default=[])
    deps = TargetListAttribute(default=[])
    proc_macro_deps = TargetListAttribute(default=[], exec=True)
    # Maps dependency labels to the name the crate imports them under
    aliases = StringDictAttribute(default={})
    edition = StringAttribute(default=None)
    version = StringAttribute(default="0.0.0")
    rustc_flags = StringListAttribute(default=[])
    rustc_env = StringDictAttribute(default={})
    compile_data = FileListAttribute(default=[])

    rust_toolchain = ToolchainAttribute(RustToolchain)

    crate_type: str

    def _aliases(self) -> Dict[Label, str]:
        return {Label(label).absolute(self.label.package).canonical(): name for label, name in self.aliases.items()}

    def _rust_flags(self) -> List[str]:
        return [*(f'--cfg=feature="{feature}"' for feature in self.crate_features), *self.rustc_flags]

    def _edition(self) -> str:
        return self.edition or self.rust_toolchain.default_edition

    def _compile(
        self,
        *,
        crate_name: str,
        root: File,
        output: File,
        metadata: Optional[File] = None,
        output_hash: Optional[str] = None,
        is_test: bool = False,
    ):
        crate_info = CrateInfo(
            name=crate_name,
            type=self.crate_type,
            root=root,
            srcs=Depset(self.srcs),
            deps=Depset(dep_variant_infos(self.deps)),
            proc_macro_deps=Depset(dep_variant_infos(self.proc_macro_deps)),
            aliases=self._aliases(),
            output=output,
            metadata=metadata,
            edition=self._edition(),
            is_test=is_test,
            rustc_env=dict(self.rustc_env),
            compile_data=Depset(self.compile_data),
            owner=self.label,
        )
        return rustc_compile_action(
            self,
            self.rust_toolchain,
            crate_info,
            output_hash=output_hash,
            rust_flags=self._rust_flags(),
            version=self.version,
        )


class RustLibrary(_RustCrateRule):
    crate_type = "rlib"

    def analyze(self):
        crate_name = crate_name_for(self.label, self.crate_name)
        root = crate_root_src(self.name, self.srcs, self.crate_type, self.crate_root)
        output_hash = determine_output_hash(root, self.label)

        rust_lib = self.declare_file(f"lib{crate_name}-{output_hash}.rlib")
        rust_metadata = self.declare_file(f"lib{crate_name}-{output_hash}.rmeta")
        return self._compile(
            crate_name=crate_name,
            root=root,
            output=rust_lib,
            metadata=rust_metadata,
            output_hash=output_hash,
        )


class RustProcMacro(_RustCrateRule):
    crate_type = "proc-macro"

    def analyze(self):
        crate_name = crate_name_for(self.label, self.crate_name)
        root = crate_root_src(self.name, self.srcs, self.crate_type, self.crate_root)
        output_hash = determine_output_hash(root, self.label)

        output = self.declare_file(f"lib{crate_name}-{output_hash}{self.rust_toolchain.dylib_ext}")
        return self._compile(crate_name=crate_name, root=root, output=output, output_hash=output_hash)


class RustBinary(_RustCrateRule):
    crate_type = "bin"

    def analyze(self):
        crate_name = crate_name_for(self.label, self.crate_name)
        root = crate_root_src(self.name, self.srcs, self.crate_type, self.crate_root)

        output = self.declare_file(f"{self.label.name}{self.rust_toolchain.binary_ext}")
        return self._compile(crate_name=crate_name, root=root, output=output)


class RustTest(_RustCrateRule):
    """
    Builds a test harness binary, either from its own sources or for the sources of an existing library (`crate`),
    in which case the test shares the library's sources, dependencies and crate name
    """

    crate_type = "bin"

    srcs = FileListAttribute(allow_files=[".rs"], default=[])
    crate = TargetAttribute(providers=[CrateInfo], default=None)

    def analyze(self):
        if self.crate is None:
            if not self.srcs:
                raise ValueError("rust test targets need either srcs or a crate to test")
            return self._analyze_standalone()
        return self._analyze_crate(self.crate[CrateInfo])

    def _analyze_standalone(self):
        crate_name = crate_name_for(self.label, self.crate_name)
        root = crate_root_src(self.name, self.srcs, "lib", self.crate_root)
        output = self.declare_file(f"{self.label.name}{self.rust_toolchain.binary_ext}")
        return self._compile(crate_name=crate_name, root=root, output=output, is_test=True)

    def _analyze_crate(self, tested: CrateInfo):
        output = self.declare_file(f"{self.label.name}{self.rust_toolchain.binary_ext}")
        crate_info = CrateInfo(
            name=tested.name,
            type=self.crate_type,
            root=tested.root,
            srcs=Depset(self.srcs, transitive=[tested.srcs]),
            deps=Depset(dep_variant_infos(self.deps), transitive=[tested.deps]),
            proc_macro_deps=Depset(dep_variant_infos(self.proc_macro_deps), transitive=[tested.proc_macro_deps]),
            aliases={**tested.aliases, **self._aliases()},
            output=output,
            edition=self.edition or tested.edition,
            is_test=True,
            rustc_env={**tested.rustc_env, **self.rustc_env},
            compile_data=Depset(self.compile_data, transitive=[tested.compile_data]),
            owner=self.label,
        )
        return rustc_compile_action(
            self,
            self.rust_toolchain,
            crate_info,
            rust_flags=self._rust_flags(),
            version=self.version,
        )
