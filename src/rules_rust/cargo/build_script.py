from ..attribute import (
    FileListAttribute,
    StringAttribute,
    StringDictAttribute,
    StringListAttribute,
    TargetAttribute,
    TargetListAttribute,
    ToolchainAttribute,
)
from ..config import Optimized
from ..depset import Depset
from ..exec import Executable
from ..provider import DefaultInfo, OutputGroupInfo
from ..rule import Rule
from ..rust.providers import BuildInfo, CrateInfo, DepInfo, RustToolchain
from ..rust.rustc import version_env
from ..rust.utils import name_to_crate_name, triple_os_arch
from .features import SYMLINK_EXEC_ROOT_FEATURE, feature_enabled

# Installed as a console script alongside this package
BUILD_SCRIPT_RUNNER = Executable(name="cargo_build_script_runner", executable_path="cargo-build-script-runner")


def _feature_env_name(feature: str) -> str:
    return "CARGO_FEATURE_" + feature.upper().replace("-", "_")


class CargoBuildScript(Rule):
    """
    Runs a Cargo build script (`build.rs`) compiled for the exec configuration and exposes what it produced to the
    crate it belongs to: the `OUT_DIR` contents, `cargo:rustc-env` variables, compiler flags and link flags.

    The crate depends on this target through its `deps`, e.g.:

        RustBinary(name="build_script_bin", srcs=["build.rs"])
        CargoBuildScript(name="build_script", script=":build_script_bin", crate_name="my_crate")
        RustLibrary(name="my_crate", srcs=["src/lib.rs"], deps=[":build_script"])
    """

    script = TargetAttribute(providers=[CrateInfo], exec=True)
    crate_name = StringAttribute(default=None)
    version = StringAttribute(default="0.0.0")
    crate_features = StringListAttribute(default=[])
    # The native library the package links to, exposed to dependents as `DEP_<links>_*` variables
    links = StringAttribute(default=None)
    build_script_env = StringDictAttribute(default={})
    rustc_flags = StringListAttribute(default=[])
    data = FileListAttribute(default=[])
    tools = TargetListAttribute(default=[], exec=True)
    # Crates whose build scripts export `DEP_<links>_*` variables to this one
    deps = TargetListAttribute(default=[], providers=[DepInfo])

    rust_toolchain = ToolchainAttribute(RustToolchain)

    def analyze(self):
        toolchain = self.rust_toolchain
        script = self.script[DefaultInfo].executable
        if script is None:
            raise RuntimeError(f"build script {self.script.label} is not an executable")

        crate_name = self.crate_name or name_to_crate_name(self.label.name)
        if crate_name.endswith("_build_script"):
            crate_name = crate_name[: -len("_build_script")]

        out_dir = self.declare_directory(f"{self.name}.out_dir")
        env_out = self.declare_file(f"{self.name}.env")
        flags_out = self.declare_file(f"{self.name}.flags")
        link_flags = self.declare_file(f"{self.name}.linkflags")
        link_search_paths = self.declare_file(f"{self.name}.linksearchpaths")
        dep_env_out = self.declare_file(f"{self.name}.depenv")
        stdout_log = self.declare_file(f"{self.name}.stdout.log")
        stderr_log = self.declare_file(f"{self.name}.stderr.log")

        target_os, target_arch = triple_os_arch(toolchain.target_triple)
        optimized = self.build_config.compilation_mode == Optimized
        mode = self.build_config.compilation_mode.value_name
        manifest_dir = "/".join(part for part in (self.label.workspace_root, self.label.package_path) if part)

        env = {
            "CARGO_CFG_TARGET_ARCH": target_arch,
            "CARGO_CFG_TARGET_OS": target_os,
            "CARGO_CRATE_NAME": crate_name,
            "CARGO_PKG_NAME": crate_name,
            "CARGO_PKG_AUTHORS": "",
            "CARGO_PKG_DESCRIPTION": "",
            "CARGO_PKG_HOMEPAGE": "",
            **version_env(self.version),
            "TARGET": toolchain.target_triple,
            "HOST": toolchain.exec_triple,
            "PROFILE": "release" if optimized else "debug",
            "OPT_LEVEL": toolchain.opt_level[mode],
            "DEBUG": "false" if toolchain.debug_info[mode] == "0" else "true",
            "NUM_JOBS": "1",
            "CARGO_ENCODED_RUSTFLAGS": "\x1f".join(self.rustc_flags),
        }
        for feature in self.crate_features:
            env[_feature_env_name(feature)] = "1"
        if feature_enabled(self, SYMLINK_EXEC_ROOT_FEATURE):
            env["RULES_RUST_SYMLINK_EXEC_ROOT"] = "1"
        env.update(self.build_script_env)

        args = [
            "--script",
            script.path,
            "--manifest-dir",
            manifest_dir or ".",
            "--rustc",
            toolchain.rustc.executable_path,
            "--out-dir",
            out_dir.path,
            "--env-out",
            env_out.path,
            "--flags-out",
            flags_out.path,
            "--link-flags-out",
            link_flags.path,
            "--link-search-paths-out",
            link_search_paths.path,
            "--dep-env-out",
            dep_env_out.path,
            "--stdout-file",
            stdout_log.path,
            "--stderr-file",
            stderr_log.path,
        ]
        dep_env_files = [dep[DepInfo].dep_env for dep in self.deps if dep[DepInfo].dep_env is not None]
        for dep_env_file in dep_env_files:
            args += ["--input-dep-env-path", dep_env_file.path]
        if self.links:
            args += ["--links", self.links]

        tool_files = [tool[DefaultInfo].files for tool in self.tools if DefaultInfo in tool]
        self.run(
            BUILD_SCRIPT_RUNNER,
            *args,
            inputs=Depset([*self.data, *dep_env_files], transitive=[self.script[DefaultInfo].files, *tool_files]),
            outputs=[
                out_dir,
                env_out,
                flags_out,
                link_flags,
                link_search_paths,
                dep_env_out,
                stdout_log,
                stderr_log,
            ],
            env=env,
            tools=Depset(transitive=[BUILD_SCRIPT_RUNNER.files, toolchain.all_files]),
            mnemonic="CargoBuildScriptRun",
            progress_message=f"Running Cargo build script {crate_name}",
        )

        return [
            BuildInfo(
                out_dir=out_dir,
                rustc_env=env_out,
                flags=flags_out,
                link_flags=link_flags,
                link_search_paths=link_search_paths,
                dep_env=dep_env_out,
                compile_data=Depset(self.data),
            ),
            DefaultInfo(files=Depset([out_dir, env_out, flags_out, link_flags, link_search_paths, dep_env_out])),
            OutputGroupInfo(groups={"streams": Depset([stdout_log, stderr_log])}),
        ]
