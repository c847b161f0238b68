import pytest

from rules_rust.analysis import AnalysisHost
from rules_rust.config import Arch, BuildConfig, Linux, Os, X86_64
from rules_rust.rust.providers import RustfmtToolchain, RustToolchain
from rules_rust.rust.toolchain import RustfmtToolchainRule, RustToolchainRule
from rules_rust.workspace import Workspace

LINUX_X86_64 = {Os: Linux, Arch: X86_64}


@pytest.fixture
def build_config():
    return BuildConfig(options=LINUX_X86_64, host_options=LINUX_X86_64)


@pytest.fixture
def workspace():
    workspace = Workspace()
    with workspace.package("//toolchain"):
        RustToolchainRule(
            name="rust",
            rustc=":bin/rustc",
            rustdoc=":bin/rustdoc",
            clippy_driver=":bin/clippy-driver",
            rust_std=[":lib/rustlib/x86_64-unknown-linux-gnu/lib/libstd.rlib"],
        )
        RustfmtToolchainRule(name="rustfmt", rustfmt=":bin/rustfmt")
    workspace.register_toolchain(RustToolchain, "//toolchain:rust")
    workspace.register_toolchain(RustfmtToolchain, "//toolchain:rustfmt")
    return workspace


@pytest.fixture
def analyze(workspace, build_config):
    def analyze(label, *, aspects=(), config=None):
        host = AnalysisHost(workspace, config if config is not None else build_config)
        return host.analyze(label, aspects=aspects)

    return analyze
