from typing import Optional

from ..aspect import Aspect
from ..attribute import TargetListAttribute, ToolchainAttribute
from ..depset import Depset
from ..provider import DefaultInfo, OutputGroupInfo
from ..rule import Rule, Target
from .providers import CrateInfo, RustToolchain
from .rustc import PROCESS_WRAPPER, collect_deps, collect_inputs, construct_arguments
from .utils import determine_output_hash

_IGNORE_TAGS = ("noexpand", "no-expand")


def _expand_ready_crate_info(target: Target) -> Optional[CrateInfo]:
    if target.label.is_external:
        return None
    if any(tag in target.tags for tag in _IGNORE_TAGS):
        return None
    if CrateInfo not in target:
        return None
    return target[CrateInfo]


class RustExpandAspect(Aspect):
    """
    Dumps the source of crates with all macros expanded.

    Applies to existing `RustLibrary`, `RustBinary`, `RustTest` and `RustProcMacro` targets and makes the expanded
    source available in the `expanded` output group, e.g.:

        rules-rust analyze //hello_lib:greeting_test --aspect expand --output-groups expanded

    Targets tagged `noexpand` or `no-expand` are skipped, as are targets from external repositories.
    """

    rust_toolchain = ToolchainAttribute(RustToolchain)

    def analyze(self):
        crate_info = _expand_ready_crate_info(self.target)
        if crate_info is None:
            return []

        toolchain = self.rust_toolchain
        dep_info, build_info = collect_deps(crate_info.deps, crate_info.proc_macro_deps, crate_info.aliases)
        compile_inputs, out_dir, build_env_files, build_flags_files = collect_inputs(
            toolchain, crate_info, dep_info, build_info
        )

        args, env = construct_arguments(
            self,
            toolchain,
            crate_info,
            dep_info,
            output_hash=determine_output_hash(crate_info.root, self.label),
            out_dir=out_dir,
            build_env_files=build_env_files,
            build_flags_files=build_flags_files,
            emit=["dep-info", "metadata"],
        )
        if crate_info.is_test:
            args.rustc_flags.append("--test")

        expand_out = self.declare_file(f"{self.label.name}.expand.rs", sibling=crate_info.output)
        args.process_wrapper_flags += ["--stdout-file", expand_out.path]

        # Expand all macros and dump the source to stdout
        args.rustc_flags.append("-Zunpretty=expanded")

        self.run(
            PROCESS_WRAPPER,
            *args.all,
            inputs=compile_inputs,
            outputs=[expand_out],
            env=env,
            tools=PROCESS_WRAPPER.files,
            mnemonic="RustExpand",
            progress_message=f"Expanding {crate_info.name}",
        )

        return [OutputGroupInfo(groups={"expanded": Depset([expand_out])})]


class RustExpand(Rule):
    """
    Expands the macros of its `deps` as a regular target, rather than by applying `RustExpandAspect` from the
    command line
    """

    deps = TargetListAttribute(providers=[CrateInfo], aspects=[RustExpandAspect])

    def analyze(self):
        expanded = []
        for dep in self.deps:
            for provider in dep.providers:
                if isinstance(provider, OutputGroupInfo) and "expanded" in provider:
                    expanded.append(provider["expanded"])
        return [DefaultInfo(files=Depset(transitive=expanded))]
