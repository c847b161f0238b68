from ..aspect import Aspect
from ..attribute import ToolchainAttribute
from ..depset import Depset
from ..provider import OutputGroupInfo
from .providers import CrateInfo, RustToolchain
from .rustc import PROCESS_WRAPPER, collect_deps, collect_inputs, construct_arguments
from .utils import determine_output_hash

_IGNORE_TAGS = ("noclippy", "no-clippy", "no-lint")


class ClippyAspect(Aspect):
    """
    Runs clippy over Rust crates as part of the `clippy_checks` output group.

    Clippy runs with the same arguments the crate is compiled with, plus any `clippy_flags` build setting. With the
    `capture_clippy_output` setting the diagnostics are written to `<name>.clippy.out` and never fail the build,
    otherwise any warning fails it.
    """

    required_providers = (CrateInfo,)

    rust_toolchain = ToolchainAttribute(RustToolchain)

    def analyze(self):
        if self.label.is_external or any(tag in self.target.tags for tag in _IGNORE_TAGS):
            return []

        toolchain = self.rust_toolchain
        if toolchain.clippy_driver is None:
            raise RuntimeError(f"the Rust toolchain for {toolchain.target_triple} does not include clippy-driver")

        crate_info = self.target[CrateInfo]
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
            tool_path=toolchain.clippy_driver.executable_path,
            emit=["dep-info", "metadata"],
        )
        if crate_info.is_test:
            args.rustc_flags.append("--test")

        error_format = self.build_config.setting("clippy_error_format")
        args.rustc_flags = [
            f"--error-format={error_format}" if flag.startswith("--error-format=") else flag
            for flag in args.rustc_flags
        ]

        if self.build_config.setting("capture_clippy_output"):
            clippy_out = self.declare_file(f"{self.label.name}.clippy.out", sibling=crate_info.output)
            args.process_wrapper_flags += ["--stderr-file", clippy_out.path]
            # Lints are reported in the output file, never as errors
            args.rustc_flags += ["-Wclippy::all", "--cap-lints=warn"]
        else:
            clippy_out = self.declare_file(f"{self.label.name}.clippy.ok", sibling=crate_info.output)
            args.process_wrapper_flags += ["--touch-file", clippy_out.path]
            args.rustc_flags += ["-Dwarnings"]
        args.rustc_flags += self.build_config.setting("clippy_flags")

        self.run(
            PROCESS_WRAPPER,
            *args.all,
            inputs=compile_inputs,
            outputs=[clippy_out],
            env=env,
            tools=Depset(transitive=[PROCESS_WRAPPER.files, toolchain.clippy_driver.files]),
            mnemonic="Clippy",
            progress_message=f"Clippy {crate_info.name}",
        )

        return [OutputGroupInfo(groups={"clippy_checks": Depset([clippy_out])})]
