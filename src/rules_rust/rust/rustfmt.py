from ..aspect import Aspect
from ..attribute import ToolchainAttribute
from ..depset import Depset
from ..provider import OutputGroupInfo
from .providers import CrateInfo, RustfmtToolchain
from .rustc import PROCESS_WRAPPER

_IGNORE_TAGS = ("norustfmt", "no-rustfmt", "no-format")


class RustfmtAspect(Aspect):
    """
    Checks that the sources of Rust crates are formatted, failing the `rustfmt_checks` output group otherwise.

    Generated sources are never checked. Targets tagged `norustfmt` or `no-rustfmt` are skipped.
    """

    required_providers = (CrateInfo,)

    rustfmt_toolchain = ToolchainAttribute(RustfmtToolchain)

    def analyze(self):
        if self.label.is_external or any(tag in self.target.tags for tag in _IGNORE_TAGS):
            return []

        crate_info = self.target[CrateInfo]
        srcs = [src for src in crate_info.srcs.to_list() if src.is_source]
        if not srcs:
            return []

        rustfmt = self.rustfmt_toolchain.rustfmt
        marker = self.declare_file(f"{self.label.name}.rustfmt.ok", sibling=crate_info.output)

        self.run(
            PROCESS_WRAPPER,
            "--touch-file",
            marker.path,
            "--",
            rustfmt.executable_path,
            "--check",
            f"--edition={crate_info.edition}",
            *(src.path for src in srcs),
            inputs=srcs,
            outputs=[marker],
            tools=Depset(transitive=[PROCESS_WRAPPER.files, self.rustfmt_toolchain.all_files]),
            mnemonic="Rustfmt",
            progress_message=f"Checking formatting of {crate_info.name}",
        )

        return [OutputGroupInfo(groups={"rustfmt_checks": Depset([marker])})]
