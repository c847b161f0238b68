import pytest

from rules_rust.analysis import AnalysisError
from rules_rust.cc import CcImport, CcInfo
from rules_rust.config import Arch, BuildConfig, CompilationMode, Linux, Optimized, Os, X86_64
from rules_rust.label import Label
from rules_rust.provider import DefaultInfo, OutputGroupInfo
from rules_rust.rust.providers import CrateInfo, DepInfo
from rules_rust.rust.rules import RustBinary, RustLibrary, RustProcMacro, RustTest
from rules_rust.rust.utils import determine_output_hash

BIN_DIR = "out/x86_64-fastbuild/bin"
EXEC_BIN_DIR = "out/x86_64-opt-exec/bin"


@pytest.fixture
def hello_workspace(workspace):
    with workspace.package("//hello_lib"):
        RustLibrary(
            name="hello_lib",
            srcs=["src/lib.rs", "src/greeter.rs"],
            crate_features=["default"],
            rustc_env={"GREETING": "hello"},
            version="1.2.3-beta.1",
        )
        RustTest(name="hello_lib_test", crate=":hello_lib")
    with workspace.package("//hello_bin"):
        CcImport(name="native", static_library="libfoo.a", linkopts=["-lz"])
        RustBinary(
            name="hello_bin",
            srcs=["src/main.rs"],
            deps=["//hello_lib", ":native"],
            aliases={"//hello_lib": "greeting"},
        )
    return workspace


def _rustc_flags(action):
    arguments = action.arguments
    return arguments[arguments.index("--") + 2 :]


def test_library(hello_workspace, analyze):
    result = analyze("//hello_lib")

    crate_info = result[CrateInfo]
    output_hash = determine_output_hash(crate_info.root, Label("//hello_lib:hello_lib"))
    assert crate_info.name == "hello_lib"
    assert crate_info.type == "rlib"
    assert crate_info.root.path == "hello_lib/src/lib.rs"
    assert crate_info.output.path == f"{BIN_DIR}/hello_lib/libhello_lib-{output_hash}.rlib"
    assert crate_info.metadata.path == f"{BIN_DIR}/hello_lib/libhello_lib-{output_hash}.rmeta"
    assert CcInfo in result

    (action,) = result.actions_with_mnemonic("Rustc")
    assert action.executable.executable_path == "rules-rust-process-wrapper"
    assert action.arguments[:4] == ["--subst", "pwd=${pwd}", "--", "toolchain/bin/rustc"]
    assert _rustc_flags(action) == [
        "hello_lib/src/lib.rs",
        "--crate-name=hello_lib",
        "--crate-type=rlib",
        "--error-format=human",
        f"--codegen=metadata=-{output_hash}",
        f"--codegen=extra-filename=-{output_hash}",
        f"--out-dir={BIN_DIR}/hello_lib",
        "--codegen=opt-level=0",
        "--codegen=debuginfo=0",
        "--emit=dep-info,link,metadata",
        "--target=x86_64-unknown-linux-gnu",
        "-Ltoolchain/lib/rustlib/x86_64-unknown-linux-gnu/lib",
        "--edition=2021",
        '--cfg=feature="default"',
    ]
    assert action.env["CARGO_CRATE_NAME"] == "hello_lib"
    assert action.env["CARGO_MANIFEST_DIR"] == "${pwd}/hello_lib"
    assert action.env["CARGO_CFG_TARGET_OS"] == "linux"
    assert action.env["CARGO_CFG_TARGET_ARCH"] == "x86_64"
    assert action.env["CARGO_PKG_VERSION"] == "1.2.3-beta.1"
    assert action.env["CARGO_PKG_VERSION_MAJOR"] == "1"
    assert action.env["CARGO_PKG_VERSION_PATCH"] == "3"
    assert action.env["CARGO_PKG_VERSION_PRE"] == "beta.1"
    assert action.env["GREETING"] == "hello"
    assert action.progress_message == "Compiling Rust rlib hello_lib (2 files)"

    input_paths = [file.path for file in action.inputs.to_list()]
    assert "hello_lib/src/greeter.rs" in input_paths
    assert "toolchain/bin/rustc" in input_paths

    groups = result[OutputGroupInfo]
    assert groups["compilation_outputs"].to_list() == [crate_info.output, crate_info.metadata]
    assert groups["build_metadata"].to_list() == [crate_info.metadata]


def test_binary_links_dependencies(hello_workspace, analyze):
    result = analyze("//hello_bin:hello_bin")
    lib_info = analyze("//hello_lib:hello_lib")[CrateInfo]

    crate_info = result[CrateInfo]
    assert crate_info.type == "bin"
    assert crate_info.output.path == f"{BIN_DIR}/hello_bin/hello_bin"
    assert result[DefaultInfo].executable == crate_info.output
    assert CcInfo not in result
    assert [dep.name for dep in result[DepInfo].direct_crates.to_list()] == ["greeting"]

    action = result.action_producing(crate_info.output)
    flags = _rustc_flags(action)
    assert f"--emit=dep-info,link={BIN_DIR}/hello_bin/hello_bin" in flags
    assert f"--extern=greeting={lib_info.output.path}" in flags
    assert f"-Ldependency={BIN_DIR}/hello_lib" in flags
    assert "-Lnative=hello_bin" in flags
    assert "-lstatic=foo" in flags
    assert "--codegen=link-arg=-lz" in flags
    assert "--codegen=link-arg=-ldl" in flags
    assert not any(flag.startswith("--codegen=metadata=") for flag in flags)
    assert action.env["CARGO_BIN_NAME"] == "hello_bin"

    input_paths = [file.path for file in action.inputs.to_list()]
    assert lib_info.output.path in input_paths
    assert lib_info.metadata.path in input_paths
    assert "hello_bin/libfoo.a" in input_paths


def test_native_libraries_are_not_linked_into_libraries(workspace, analyze):
    with workspace.package("//pkg"):
        CcImport(name="native", static_library="libfoo.a")
        RustLibrary(name="lib", srcs=["lib.rs"], deps=[":native"])

    result = analyze("//pkg:lib")

    flags = _rustc_flags(result.actions_with_mnemonic("Rustc")[0])
    assert "-Lnative=pkg" in flags
    assert "-lstatic=foo" not in flags
    assert [linker_input.owner for linker_input in result[CcInfo].linker_inputs.to_list()] == [Label("//pkg:native")]


def test_test_of_existing_crate(hello_workspace, analyze):
    result = analyze("//hello_lib:hello_lib_test")

    crate_info = result[CrateInfo]
    assert crate_info.name == "hello_lib"
    assert crate_info.type == "bin"
    assert crate_info.is_test
    assert crate_info.root.path == "hello_lib/src/lib.rs"
    assert crate_info.output.path == f"{BIN_DIR}/hello_lib/hello_lib_test"

    action = result.action_producing(crate_info.output)
    flags = _rustc_flags(action)
    assert "--test" in flags
    assert "--crate-type=bin" in flags
    assert action.env["GREETING"] == "hello"


def test_standalone_test(workspace, analyze):
    with workspace.package("//tests"):
        RustTest(name="integration", srcs=["integration.rs"])

    result = analyze("//tests:integration")

    assert result[CrateInfo].root.path == "tests/integration.rs"
    assert "--test" in _rustc_flags(result.actions_with_mnemonic("Rustc")[0])


def test_test_without_srcs_or_crate(workspace, analyze):
    with workspace.package("//tests"):
        RustTest(name="empty")

    with pytest.raises(AnalysisError) as excinfo:
        analyze("//tests:empty")

    assert "need either srcs or a crate" in str(excinfo.value)


def test_crate_name_from_target_name(workspace, analyze):
    with workspace.package("//pkg"):
        RustLibrary(name="my-lib", srcs=["lib.rs"])

    assert analyze("//pkg:my-lib")[CrateInfo].name == "my_lib"


def test_invalid_crate_name(workspace, analyze):
    with workspace.package("//pkg"):
        RustLibrary(name="lib", crate_name="1lib", srcs=["lib.rs"])

    with pytest.raises(AnalysisError) as excinfo:
        analyze("//pkg:lib")

    assert "crate name '1lib' is not valid" in str(excinfo.value)


def test_ambiguous_crate_root(workspace, analyze):
    with workspace.package("//pkg"):
        RustLibrary(name="lib", srcs=["a.rs", "b.rs"])

    with pytest.raises(AnalysisError) as excinfo:
        analyze("//pkg:lib")

    assert "could not determine the crate root" in str(excinfo.value)


def test_crate_root_named_after_target(workspace, analyze):
    with workspace.package("//pkg"):
        RustLibrary(name="util", srcs=["helpers.rs", "util.rs"])

    assert analyze("//pkg:util")[CrateInfo].root.path == "pkg/util.rs"


def test_proc_macro_deps_use_exec_configuration(workspace, analyze):
    with workspace.package("//pkg"):
        RustProcMacro(name="macros", srcs=["macros.rs"])
        RustLibrary(name="lib", srcs=["lib.rs"], proc_macro_deps=[":macros"])

    result = analyze("//pkg:lib")

    flags = _rustc_flags(result.action_producing(result[CrateInfo].output))
    (extern,) = [flag for flag in flags if flag.startswith("--extern=")]
    assert extern.startswith(f"--extern=macros={EXEC_BIN_DIR}/pkg/libmacros-")
    assert extern.endswith(".so")


def test_proc_macro_in_deps(workspace, analyze):
    with workspace.package("//pkg"):
        RustProcMacro(name="macros", srcs=["macros.rs"])
        RustLibrary(name="lib", srcs=["lib.rs"], deps=[":macros"])

    with pytest.raises(AnalysisError) as excinfo:
        analyze("//pkg:lib")

    assert "must be listed in proc_macro_deps" in str(excinfo.value)


def test_library_in_proc_macro_deps(workspace, analyze):
    with workspace.package("//pkg"):
        RustLibrary(name="other", srcs=["other.rs"])
        RustLibrary(name="lib", srcs=["lib.rs"], proc_macro_deps=[":other"])

    with pytest.raises(AnalysisError) as excinfo:
        analyze("//pkg:lib")

    assert "only proc-macro crates may be listed in proc_macro_deps" in str(excinfo.value)


def test_source_files_are_not_dependencies(workspace, analyze):
    with workspace.package("//pkg"):
        RustLibrary(name="lib", srcs=["lib.rs"], deps=[":data.txt"])

    with pytest.raises(AnalysisError) as excinfo:
        analyze("//pkg:lib")

    assert "cannot be a dependency of a Rust crate" in str(excinfo.value)


def test_optimized_build_with_settings(hello_workspace, analyze):
    config = BuildConfig(
        options={Os: Linux, Arch: X86_64, CompilationMode: Optimized},
        host_options={Os: Linux, Arch: X86_64},
        settings={"error_format": "json", "extra_rustc_flags": ["-Ccodegen-units=1"]},
    )

    result = analyze("//hello_lib", config=config)

    flags = _rustc_flags(result.actions_with_mnemonic("Rustc")[0])
    assert "--codegen=opt-level=3" in flags
    assert "--error-format=json" in flags
    assert flags[-2:] == ["-Ccodegen-units=1", '--cfg=feature="default"']
    assert result[CrateInfo].output.path.startswith("out/x86_64-opt/bin/hello_lib/")


def test_test_shares_dependency_with_tested_crate(workspace, analyze):
    with workspace.package("//p"):
        RustLibrary(name="dep", srcs=["dep.rs"])
        RustLibrary(name="lib", srcs=["lib.rs"], deps=[":dep"])
        RustTest(name="lib_test", crate=":lib", deps=[":dep"])

    result = analyze("//p:lib_test")

    dep_output = analyze("//p:dep")[CrateInfo].output
    action = result.action_producing(result[CrateInfo].output)
    externs = [flag for flag in _rustc_flags(action) if flag.startswith("--extern=")]
    assert externs == [f"--extern=dep={dep_output.path}"]
    direct_crates = [dep.name for dep in result[DepInfo].direct_crates.to_list()]
    assert direct_crates == ["dep"]
