import logging
from typing import Dict, List, Optional, Sequence, Tuple

from ..artifact import File
from ..cc import CcInfo
from ..depset import Depset
from ..exec import Executable
from ..label import Label
from ..provider import DefaultInfo, OutputGroupInfo, Provider
from ..rule import AnalysisContext, Target
from .providers import (
    AliasableDep,
    BuildInfo,
    CrateGroupInfo,
    CrateInfo,
    DepInfo,
    DepVariantInfo,
    RustToolchain,
)
from .utils import is_link_crate_type, triple_os_arch

logger = logging.getLogger(__name__)

# Installed as a console script alongside this package
PROCESS_WRAPPER = Executable(name="process_wrapper", executable_path="rules-rust-process-wrapper")

_STATIC_LIBRARY_EXTENSIONS = (".a", ".lib")
_NATIVE_LIBRARY_EXTENSIONS = (".a", ".lib", ".so", ".dylib", ".dll")


class CompileArgs:
    """
    The command line of a compile action, split into the flags of the process wrapper and those of the tool it runs
    """

    def __init__(self, tool_path: str):
        self.tool_path = tool_path
        self.process_wrapper_flags: List[str] = []
        self.rustc_flags: List[str] = []

    @property
    def all(self) -> List[str]:
        return [*self.process_wrapper_flags, "--", self.tool_path, *self.rustc_flags]


def dep_variant_infos(targets: Sequence[Target]) -> List[DepVariantInfo]:
    """
    Flattens dependency targets into one `DepVariantInfo` per crate, expanding crate groups
    """
    infos = []
    for target in targets:
        if CrateGroupInfo in target:
            infos += target[CrateGroupInfo].dep_variant_infos.to_list()
            continue
        info = DepVariantInfo(
            crate_info=target.get(CrateInfo),
            dep_info=target.get(DepInfo),
            cc_info=target.get(CcInfo),
            build_info=target.get(BuildInfo),
        )
        if info.crate_info is None and info.cc_info is None and info.build_info is None:
            raise RuntimeError(
                f"{target.label} cannot be a dependency of a Rust crate: it is neither a crate, a crate group, a "
                f"native library nor a build script"
            )
        infos.append(info)
    return infos


def collect_deps(
    deps: Depset, proc_macro_deps: Depset, aliases: Dict[Label, str]
) -> Tuple[DepInfo, Optional[BuildInfo]]:
    """
    Walks the direct dependencies of a crate (as `DepVariantInfo`s) and builds the `DepInfo` describing everything
    the crate is compiled against, along with the `BuildInfo` of the crate's own build script, if any
    """
    for dep in deps.to_list():
        if dep.crate_info is not None and dep.crate_info.type == "proc-macro":
            raise RuntimeError(
                f"{dep.crate_info.owner} is a proc-macro crate and must be listed in proc_macro_deps, not deps"
            )
    for dep in proc_macro_deps.to_list():
        if dep.crate_info is None or dep.crate_info.type != "proc-macro":
            kind = dep.crate_info.type if dep.crate_info is not None else "non-crate"
            name = dep.crate_info.owner if dep.crate_info is not None else "a dependency"
            raise RuntimeError(f"only proc-macro crates may be listed in proc_macro_deps, but {name} is a {kind}")

    direct_crates = []
    transitive_crates = []
    transitive_crate_outputs = []
    transitive_metadata_outputs = []
    transitive_noncrates = []
    transitive_build_infos = []
    transitive_link_search_paths = []
    build_info = None

    # Consumers build their own DepVariantInfo for each dependency, so the same crate can arrive more than once
    seen = set()
    for dep in Depset(transitive=[deps, proc_macro_deps]).to_list():
        key = (id(dep.crate_info), id(dep.cc_info), id(dep.build_info))
        if key in seen:
            continue
        seen.add(key)
        crate_info = dep.crate_info
        dep_info = dep.dep_info
        if crate_info is not None:
            if dep_info is None:
                raise RuntimeError(f"crate {crate_info.owner} is missing its DepInfo")
            direct_crates.append(AliasableDep(name=aliases.get(crate_info.owner, crate_info.name), dep=crate_info))
            transitive_crates.append(Depset([crate_info], transitive=[dep_info.transitive_crates]))
            transitive_crate_outputs.append(
                Depset([crate_info.output], transitive=[dep_info.transitive_crate_outputs])
            )
            transitive_metadata_outputs.append(
                Depset(
                    [crate_info.metadata] if crate_info.metadata is not None else [],
                    transitive=[dep_info.transitive_metadata_outputs],
                )
            )
            transitive_noncrates.append(dep_info.transitive_noncrates)
            transitive_build_infos.append(dep_info.transitive_build_infos)
            transitive_link_search_paths.append(dep_info.link_search_path_files)
        elif dep.cc_info is not None:
            transitive_noncrates.append(dep.cc_info.linker_inputs)
        elif dep.build_info is not None:
            if build_info is not None:
                raise RuntimeError("several dependencies provide build script information, only one is allowed")
            build_info = dep.build_info
            transitive_build_infos.append(Depset([build_info]))
            if build_info.link_search_paths is not None:
                transitive_link_search_paths.append(Depset([build_info.link_search_paths]))
        else:
            raise RuntimeError("Rust crates can only depend on crates, crate groups, native libraries or build scripts")

    dep_info = DepInfo(
        direct_crates=Depset(direct_crates),
        transitive_crates=Depset(transitive=transitive_crates),
        transitive_crate_outputs=Depset(transitive=transitive_crate_outputs),
        transitive_metadata_outputs=Depset(transitive=transitive_metadata_outputs),
        transitive_noncrates=Depset(transitive=transitive_noncrates, order="topological"),
        transitive_build_infos=Depset(transitive=transitive_build_infos),
        link_search_path_files=Depset(transitive=transitive_link_search_paths),
        dep_env=build_info.dep_env if build_info is not None else None,
    )
    return dep_info, build_info


def collect_inputs(
    toolchain: RustToolchain, crate_info: CrateInfo, dep_info: DepInfo, build_info: Optional[BuildInfo]
) -> Tuple[Depset, Optional[File], List[File], List[File]]:
    """
    Gathers the inputs of a compile action.

    Returns the inputs, the build script output directory, and the build script environment and flag files that
    the process wrapper reads before running the compiler.
    """
    linker_libraries = []
    for linker_input in dep_info.transitive_noncrates.to_list():
        for library in linker_input.libraries:
            if library not in linker_libraries:
                linker_libraries.append(library)

    out_dir = None
    build_env_files = []
    build_flags_files = []
    build_info_inputs = []
    build_info_data = []
    if build_info is not None:
        out_dir = build_info.out_dir
        if build_info.rustc_env is not None:
            build_env_files.append(build_info.rustc_env)
        if build_info.flags is not None:
            build_flags_files.append(build_info.flags)
        if build_info.link_flags is not None and (is_link_crate_type(crate_info.type) or crate_info.is_test):
            build_flags_files.append(build_info.link_flags)
        build_info_inputs = [out_dir, *build_env_files, *build_flags_files]
        build_info_inputs = [file for file in build_info_inputs if file is not None]
        build_info_data = [build_info.compile_data]

    inputs = Depset(
        [*linker_libraries, *build_info_inputs],
        transitive=[
            crate_info.srcs,
            crate_info.compile_data,
            toolchain.all_files,
            dep_info.transitive_crate_outputs,
            dep_info.transitive_metadata_outputs,
            dep_info.link_search_path_files,
            *build_info_data,
        ],
    )
    return inputs, out_dir, build_env_files, build_flags_files


def _native_library_name(library: File) -> Tuple[str, bool]:
    basename = library.basename
    for extension in _NATIVE_LIBRARY_EXTENSIONS:
        if basename.endswith(extension):
            stem = basename[: -len(extension)]
            is_static = extension in _STATIC_LIBRARY_EXTENSIONS
            break
    else:
        raise RuntimeError(f"{library.path} is not a native library")
    if stem.startswith("lib") and not basename.endswith(".lib"):
        stem = stem[len("lib") :]
    return stem, is_static


def version_env(version: str) -> Dict[str, str]:
    core, _, pre = version.partition("-")
    parts = (core.split(".") + ["", "", ""])[:3]
    return {
        "CARGO_PKG_VERSION": version,
        "CARGO_PKG_VERSION_MAJOR": parts[0],
        "CARGO_PKG_VERSION_MINOR": parts[1],
        "CARGO_PKG_VERSION_PATCH": parts[2],
        "CARGO_PKG_VERSION_PRE": pre,
    }


def construct_arguments(
    ctx: AnalysisContext,
    toolchain: RustToolchain,
    crate_info: CrateInfo,
    dep_info: DepInfo,
    *,
    output_hash: Optional[str],
    out_dir: Optional[File] = None,
    build_env_files: Sequence[File] = (),
    build_flags_files: Sequence[File] = (),
    tool_path: Optional[str] = None,
    emit: Sequence[str] = ("dep-info", "link"),
    rust_flags: Sequence[str] = (),
    version: str = "0.0.0",
) -> Tuple[CompileArgs, Dict[str, str]]:
    """
    Builds the command line and environment for running `rustc` (or a tool sharing its command line, such as
    clippy) over a crate through the process wrapper
    """
    args = CompileArgs(tool_path or toolchain.rustc.executable_path)
    build_config = ctx.build_config

    target_os, target_arch = triple_os_arch(toolchain.target_triple)
    owner = crate_info.owner
    manifest_dir = "/".join(part for part in (owner.workspace_root, owner.package_path) if part)
    env = {
        "CARGO_CFG_TARGET_ARCH": target_arch,
        "CARGO_CFG_TARGET_OS": target_os,
        "CARGO_CRATE_NAME": crate_info.name,
        "CARGO_MANIFEST_DIR": f"${{pwd}}/{manifest_dir}".rstrip("/"),
        "CARGO_PKG_AUTHORS": "",
        "CARGO_PKG_DESCRIPTION": "",
        "CARGO_PKG_HOMEPAGE": "",
        "CARGO_PKG_NAME": crate_info.name,
        **version_env(version),
    }
    if crate_info.type == "bin":
        env["CARGO_BIN_NAME"] = crate_info.output.basename

    args.process_wrapper_flags += ["--subst", "pwd=${pwd}"]
    for file in build_env_files:
        args.process_wrapper_flags += ["--env-file", file.path]
    for file in build_flags_files:
        args.process_wrapper_flags += ["--arg-file", file.path]
    for file in dep_info.link_search_path_files.to_list():
        args.process_wrapper_flags += ["--arg-file", file.path]
    if out_dir is not None:
        env["OUT_DIR"] = f"${{pwd}}/{out_dir.path}"

    flags = args.rustc_flags
    flags += [
        crate_info.root.path,
        f"--crate-name={crate_info.name}",
        f"--crate-type={crate_info.type}",
        f"--error-format={build_config.setting('error_format')}",
    ]
    if output_hash:
        flags += [f"--codegen=metadata=-{output_hash}", f"--codegen=extra-filename=-{output_hash}"]
    flags.append(f"--out-dir={crate_info.output.dirname}")

    mode = build_config.compilation_mode.value_name
    flags += [
        f"--codegen=opt-level={toolchain.opt_level[mode]}",
        f"--codegen=debuginfo={toolchain.debug_info[mode]}",
    ]

    # Binaries are not named after the crate, so their path must be given explicitly
    emit_with_paths = [
        f"link={crate_info.output.path}" if kind == "link" and crate_info.type == "bin" else kind for kind in emit
    ]
    flags.append(f"--emit={','.join(emit_with_paths)}")
    flags.append(f"--target={toolchain.target_triple}")
    for lib_dir in toolchain.sysroot_lib_dirs:
        flags.append(f"-L{lib_dir}")
    flags.append(f"--edition={crate_info.edition}")

    for dep in dep_info.direct_crates.to_list():
        flags.append(f"--extern={dep.name}={dep.dep.output.path}")

    dependency_dirs = []
    for output in dep_info.transitive_crate_outputs.to_list():
        if output.dirname not in dependency_dirs:
            dependency_dirs.append(output.dirname)
    for dependency_dir in dependency_dirs:
        flags.append(f"-Ldependency={dependency_dir}")

    linking = is_link_crate_type(crate_info.type) or crate_info.is_test
    native_dirs = []
    native_flags = []
    for linker_input in dep_info.transitive_noncrates.to_list():
        for library in linker_input.libraries:
            if library.dirname not in native_dirs:
                native_dirs.append(library.dirname)
            name, is_static = _native_library_name(library)
            native_flags.append(f"-l{'static' if is_static else 'dylib'}={name}")
        native_flags += [f"--codegen=link-arg={flag}" for flag in linker_input.user_link_flags]
    flags += [f"-Lnative={native_dir}" for native_dir in native_dirs]
    if linking:
        flags += native_flags
        flags += [f"--codegen=link-arg={flag}" for flag in toolchain.stdlib_linkflags]

    flags += toolchain.extra_rustc_flags
    if build_config.is_exec:
        flags += build_config.setting("extra_exec_rustc_flags")
    else:
        flags += build_config.setting("extra_rustc_flags")
    flags += rust_flags

    env.update(crate_info.rustc_env)
    return args, env


def rustc_compile_action(
    ctx: AnalysisContext,
    toolchain: RustToolchain,
    crate_info: CrateInfo,
    *,
    output_hash: Optional[str] = None,
    rust_flags: Sequence[str] = (),
    version: str = "0.0.0",
) -> List[Provider]:
    """
    Registers the action compiling a crate and returns the providers describing it to dependents
    """
    dep_info, build_info = collect_deps(crate_info.deps, crate_info.proc_macro_deps, crate_info.aliases)
    compile_inputs, out_dir, build_env_files, build_flags_files = collect_inputs(
        toolchain, crate_info, dep_info, build_info
    )

    emit = ["dep-info", "link"]
    if crate_info.metadata is not None:
        emit.append("metadata")

    args, env = construct_arguments(
        ctx,
        toolchain,
        crate_info,
        dep_info,
        output_hash=output_hash,
        out_dir=out_dir,
        build_env_files=build_env_files,
        build_flags_files=build_flags_files,
        emit=emit,
        rust_flags=rust_flags,
        version=version,
    )
    if crate_info.is_test:
        args.rustc_flags.append("--test")

    outputs = [crate_info.output]
    if crate_info.metadata is not None:
        outputs.append(crate_info.metadata)

    srcs_count = len(crate_info.srcs.to_list())
    logger.debug("compiling %s crate %s from %s", crate_info.type, crate_info.name, crate_info.root.path)
    ctx.run(
        PROCESS_WRAPPER,
        *args.all,
        inputs=compile_inputs,
        outputs=outputs,
        env=env,
        tools=PROCESS_WRAPPER.files,
        mnemonic="Rustc",
        progress_message=(
            f"Compiling Rust {crate_info.type} {crate_info.name} ({srcs_count} file{'' if srcs_count == 1 else 's'})"
        ),
    )

    groups = {"compilation_outputs": Depset(outputs)}
    if crate_info.metadata is not None:
        groups["build_metadata"] = Depset([crate_info.metadata])

    providers = [crate_info, dep_info]
    if not is_link_crate_type(crate_info.type) and not crate_info.is_test:
        providers.append(CcInfo(linker_inputs=dep_info.transitive_noncrates))
    providers += [
        DefaultInfo(
            files=Depset([crate_info.output]),
            executable=crate_info.output if crate_info.type == "bin" else None,
        ),
        OutputGroupInfo(groups=groups),
    ]
    return providers
