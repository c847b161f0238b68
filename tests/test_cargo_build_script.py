import os
import stat

import pytest

from rules_rust.analysis import AnalysisError
from rules_rust.cargo.build_script import CargoBuildScript
from rules_rust.cargo.build_script_runner import BuildScriptFailed, main, parse_build_script_output, read_dep_env
from rules_rust.provider import DefaultInfo, OutputGroupInfo
from rules_rust.rust.providers import BuildInfo, CrateInfo, DepInfo
from rules_rust.rust.rules import RustBinary, RustLibrary

BIN_DIR = "out/x86_64-fastbuild/bin"
EXEC_BIN_DIR = "out/x86_64-opt-exec/bin"


@pytest.fixture
def build_script_workspace(workspace):
    with workspace.package("//pkg"):
        RustBinary(name="build_script_bin", srcs=["build.rs"])
        CargoBuildScript(
            name="build_script",
            script=":build_script_bin",
            crate_name="my_crate",
            version="0.3.1",
            crate_features=["std", "serde-support"],
            links="z",
            build_script_env={"CC": "gcc"},
            rustc_flags=["--cfg=a", "--cfg=b"],
            data=["data.txt"],
        )
        RustLibrary(name="my_crate", srcs=["src/lib.rs"], deps=[":build_script"])
        RustBinary(name="my_bin", srcs=["src/main.rs"], deps=[":build_script"])
    return workspace


def test_build_script_action(build_script_workspace, analyze):
    result = analyze("//pkg:build_script")

    build_info = result[BuildInfo]
    assert build_info.out_dir.path == f"{BIN_DIR}/pkg/build_script.out_dir"
    assert build_info.out_dir.is_directory
    assert build_info.rustc_env.path == f"{BIN_DIR}/pkg/build_script.env"
    assert build_info.flags.path == f"{BIN_DIR}/pkg/build_script.flags"
    assert build_info.link_flags.path == f"{BIN_DIR}/pkg/build_script.linkflags"
    assert [file.path for file in result.output_group("streams")] == [
        f"{BIN_DIR}/pkg/build_script.stdout.log",
        f"{BIN_DIR}/pkg/build_script.stderr.log",
    ]

    (action,) = result.actions_with_mnemonic("CargoBuildScriptRun")
    assert action.executable.executable_path == "cargo-build-script-runner"
    assert action.arguments[:6] == [
        "--script",
        f"{EXEC_BIN_DIR}/pkg/build_script_bin",
        "--manifest-dir",
        "pkg",
        "--rustc",
        "toolchain/bin/rustc",
    ]
    assert action.arguments[-2:] == ["--links", "z"]
    assert action.env["CARGO_PKG_NAME"] == "my_crate"
    assert action.env["CARGO_PKG_VERSION_MINOR"] == "3"
    assert action.env["CARGO_FEATURE_STD"] == "1"
    assert action.env["CARGO_FEATURE_SERDE_SUPPORT"] == "1"
    assert action.env["CARGO_ENCODED_RUSTFLAGS"] == "--cfg=a\x1f--cfg=b"
    assert action.env["TARGET"] == "x86_64-unknown-linux-gnu"
    assert action.env["PROFILE"] == "debug"
    assert action.env["CC"] == "gcc"
    assert "RULES_RUST_SYMLINK_EXEC_ROOT" not in action.env

    input_paths = [file.path for file in action.inputs.to_list()]
    assert "pkg/data.txt" in input_paths
    assert f"{EXEC_BIN_DIR}/pkg/build_script_bin" in input_paths

    # The script itself is compiled in the exec configuration
    (compile_action,) = result.actions_with_mnemonic("Rustc")
    assert compile_action.outputs[0].path == f"{EXEC_BIN_DIR}/pkg/build_script_bin"


def test_build_script_crate_name_from_target(workspace, analyze):
    with workspace.package("//pkg"):
        RustBinary(name="build_script_bin", srcs=["build.rs"])
        CargoBuildScript(name="foo-bar_build_script", script=":build_script_bin")

    result = analyze("//pkg:foo-bar_build_script")

    (action,) = result.actions_with_mnemonic("CargoBuildScriptRun")
    assert action.env["CARGO_CRATE_NAME"] == "foo_bar"


def test_symlink_exec_root_feature(workspace, analyze):
    with workspace.package("//pkg"):
        RustBinary(name="build_script_bin", srcs=["build.rs"])
        CargoBuildScript(name="build_script", script=":build_script_bin", features=["symlink-exec-root"])

    result = analyze("//pkg:build_script")

    (action,) = result.actions_with_mnemonic("CargoBuildScriptRun")
    assert action.env["RULES_RUST_SYMLINK_EXEC_ROOT"] == "1"


def test_library_consumes_build_script(build_script_workspace, analyze):
    result = analyze("//pkg:my_crate")
    build_info = analyze("//pkg:build_script")[BuildInfo]

    action = result.action_producing(result[CrateInfo].output)
    wrapper_flags = action.arguments[: action.arguments.index("--")]
    assert wrapper_flags == [
        "--subst",
        "pwd=${pwd}",
        "--env-file",
        build_info.rustc_env.path,
        "--arg-file",
        build_info.flags.path,
        "--arg-file",
        build_info.link_search_paths.path,
    ]
    assert action.env["OUT_DIR"] == f"${{pwd}}/{build_info.out_dir.path}"

    input_paths = [file.path for file in action.inputs.to_list()]
    assert build_info.out_dir.path in input_paths
    assert "pkg/data.txt" in input_paths


def test_binary_consumes_build_script_link_flags(build_script_workspace, analyze):
    result = analyze("//pkg:my_bin")
    build_info = analyze("//pkg:build_script")[BuildInfo]

    action = result.action_producing(result[CrateInfo].output)
    assert ["--arg-file", build_info.link_flags.path] == action.arguments[6:8]


def test_only_one_build_script(workspace, analyze):
    with workspace.package("//pkg"):
        RustBinary(name="build_script_bin", srcs=["build.rs"])
        CargoBuildScript(name="one", script=":build_script_bin")
        CargoBuildScript(name="two", script=":build_script_bin")
        RustLibrary(name="lib", srcs=["lib.rs"], deps=[":one", ":two"])

    with pytest.raises(AnalysisError) as excinfo:
        analyze("//pkg:lib")

    assert "only one is allowed" in str(excinfo.value)


def test_build_script_default_info(build_script_workspace, analyze):
    result = analyze("//pkg:build_script")

    assert f"{BIN_DIR}/pkg/build_script.depenv" in [file.path for file in result[DefaultInfo].files.to_list()]
    assert OutputGroupInfo in result


def test_parse_build_script_output():
    stdout = "\n".join(
        [
            "some unrelated line",
            "cargo:rustc-env=FOO=bar=baz",
            "cargo:rustc-cfg=has_feature",
            "cargo:rustc-flags=-l foo -L/exec/lib",
            "cargo:rustc-link-lib=static=z",
            "cargo:rustc-link-search=native=/exec/out/lib",
            "cargo::rustc-link-arg=-Wl,--as-needed",
            "cargo:warning=be careful",
            "cargo:rerun-if-changed=build.rs",
            "cargo:include=/exec/include",
        ]
    )

    output = parse_build_script_output(stdout, links="z", exec_root="/exec")

    assert output.env == ["FOO=bar=baz"]
    assert output.flags == ["--cfg=has_feature", "-lfoo", "-L${pwd}/lib", "-lstatic=z"]
    assert output.link_search_paths == ["-Lnative=${pwd}/out/lib"]
    assert output.link_flags == ["-Clink-arg=-Wl,--as-needed"]
    assert output.warnings == ["be careful"]
    assert output.dep_env == ["DEP_Z_INCLUDE=${pwd}/include"]


def test_parse_metadata_directive():
    stdout = "cargo::metadata=root=/exec/out\ncargo:version=1.3\n"
    output = parse_build_script_output(stdout, links="z", exec_root="/exec")

    assert output.dep_env == ["DEP_Z_ROOT=${pwd}/out", "DEP_Z_VERSION=1.3"]

    with pytest.raises(BuildScriptFailed):
        parse_build_script_output("cargo::metadata=novalue\n", links="z")


def test_parse_build_script_output_without_links():
    output = parse_build_script_output("cargo:include=/some/path\n")

    assert output.dep_env == []


def test_parse_invalid_rustc_flags():
    with pytest.raises(BuildScriptFailed) as excinfo:
        parse_build_script_output("cargo:rustc-flags=--verbose\n")

    assert "only supports -l and -L" in str(excinfo.value)


def test_parse_invalid_rustc_env():
    with pytest.raises(BuildScriptFailed):
        parse_build_script_output("cargo:rustc-env=NOVALUE\n")


def _write_script(path, body):
    path.write_text("#!/bin/sh\n" + body)
    path.chmod(path.stat().st_mode | stat.S_IXUSR)


@pytest.mark.skipif(os.name != "posix", reason="uses a shell script as build script")
def test_runner(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "pkg").mkdir()
    _write_script(
        tmp_path / "pkg" / "build.sh",
        'echo "cargo:rustc-env=GENERATED=$OUT_DIR/gen.rs"\necho "cargo:rustc-cfg=from_script"\necho oops >&2\n',
    )

    main(
        [
            "--script",
            "pkg/build.sh",
            "--manifest-dir",
            "pkg",
            "--out-dir",
            "out/build_script.out_dir",
            "--env-out",
            "build_script.env",
            "--flags-out",
            "build_script.flags",
            "--stderr-file",
            "build_script.stderr.log",
        ]
    )

    assert (tmp_path / "out" / "build_script.out_dir").is_dir()
    assert (tmp_path / "build_script.env").read_text() == "GENERATED=${pwd}/out/build_script.out_dir/gen.rs\n"
    assert (tmp_path / "build_script.flags").read_text() == "--cfg=from_script\n"
    assert (tmp_path / "build_script.stderr.log").read_text() == "oops\n"


@pytest.mark.skipif(os.name != "posix", reason="uses a shell script as build script")
def test_runner_failure(tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)
    _write_script(tmp_path / "build.sh", "echo broken >&2\nexit 3\n")

    with pytest.raises(SystemExit) as excinfo:
        main(["--script", "build.sh", "--manifest-dir", ".", "--out-dir", "out"])

    assert excinfo.value.code == 1
    assert "failed with exit code 3" in capsys.readouterr().err


def test_dep_env_reaches_dependent_build_scripts(workspace, analyze):
    with workspace.package("//zlib"):
        RustBinary(name="build_script_bin", srcs=["build.rs"])
        CargoBuildScript(name="build_script", script=":build_script_bin", links="z")
        RustLibrary(name="zlib", srcs=["lib.rs"], deps=[":build_script"])
    with workspace.package("//pkg"):
        RustBinary(name="build_script_bin", srcs=["build.rs"])
        CargoBuildScript(name="build_script", script=":build_script_bin", deps=["//zlib"])

    zlib = analyze("//zlib")
    result = analyze("//pkg:build_script")

    dep_env = zlib[DepInfo].dep_env
    assert dep_env.path == f"{BIN_DIR}/zlib/build_script.depenv"
    (action,) = result.actions_with_mnemonic("CargoBuildScriptRun")
    assert action.arguments[-2:] == ["--input-dep-env-path", dep_env.path]
    assert dep_env.path in [file.path for file in action.inputs.to_list()]


def test_read_dep_env(tmp_path):
    dep_env = tmp_path / "build_script.depenv"
    dep_env.write_text("DEP_Z_INCLUDE=${pwd}/include\n\nDEP_Z_ROOT=/usr\n")

    assert read_dep_env(str(dep_env), "/exec") == {"DEP_Z_INCLUDE": "/exec/include", "DEP_Z_ROOT": "/usr"}


def test_read_invalid_dep_env(tmp_path):
    dep_env = tmp_path / "build_script.depenv"
    dep_env.write_text("DEP_Z_INCLUDE\n")

    with pytest.raises(BuildScriptFailed):
        read_dep_env(str(dep_env), "/exec")


@pytest.mark.skipif(os.name != "posix", reason="uses a shell script as build script")
def test_runner_exports_dep_env(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    _write_script(tmp_path / "build.sh", 'echo "cargo:rustc-env=ZLIB_INCLUDE=$DEP_Z_INCLUDE"\n')
    (tmp_path / "zlib.depenv").write_text("DEP_Z_INCLUDE=${pwd}/zlib/include\n")

    main(
        [
            "--script",
            "build.sh",
            "--manifest-dir",
            ".",
            "--out-dir",
            "out",
            "--input-dep-env-path",
            "zlib.depenv",
            "--env-out",
            "build_script.env",
        ]
    )

    assert (tmp_path / "build_script.env").read_text() == "ZLIB_INCLUDE=${pwd}/zlib/include\n"


@pytest.mark.skipif(os.name != "posix", reason="uses a shell script as build script")
def test_runner_tolerates_non_utf8_output(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    _write_script(tmp_path / "build.sh", "printf 'cargo:rustc-cfg=ok\\n\\377\\n'\nprintf '\\376' >&2\n")

    main(
        [
            "--script",
            "build.sh",
            "--manifest-dir",
            ".",
            "--out-dir",
            "out",
            "--flags-out",
            "build_script.flags",
            "--stderr-file",
            "build_script.stderr.log",
        ]
    )

    assert (tmp_path / "build_script.flags").read_text() == "--cfg=ok\n"
    assert (tmp_path / "build_script.stderr.log").read_text(encoding="utf-8") == "\ufffd"
