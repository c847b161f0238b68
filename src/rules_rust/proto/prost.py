"""
Rules for building protos in Rust with prost and tonic
"""

import logging
from typing import List, Optional, Sequence, Tuple

from ..artifact import File
from ..aspect import Aspect
from ..attribute import (
    FileAttribute,
    StringAttribute,
    StringListAttribute,
    TargetAttribute,
    ToolchainAttribute,
)
from ..cc import CcInfo
from ..depset import Depset
from ..exec import Executable
from ..provider import DefaultInfo, Provider
from ..rule import Rule, Target
from ..rust.providers import (
    CrateGroupInfo,
    CrateInfo,
    DepInfo,
    DepVariantInfo,
    RustfmtToolchain,
    RustToolchain,
)
from ..rust.rustc import dep_variant_infos, rustc_compile_action
from ..rust.utils import name_to_crate_name, string_hash
from .providers import ProstProtoInfo, ProtoInfo, RustProstToolchain, TonicProtoInfo

logger = logging.getLogger(__name__)

# Installed as a console script alongside this package
PROTOC_WRAPPER = Executable(name="protoc_wrapper", executable_path="prost-protoc-wrapper")

PROST_EXTENSION = ".rs"
TONIC_EXTENSION = ".tonic.rs"

RUST_EDITION = "2021"


class RustProstToolchainRule(Rule):
    """
    Declares the prost (and optionally tonic) plugins, the runtime crates generated code is compiled against and the
    proto compiler
    """

    prost_plugin = FileAttribute(exec=True)
    # e.g. `--plugin=protoc-gen-prost=%s`
    prost_plugin_flag = StringAttribute()
    prost_runtime = TargetAttribute(providers=[[CrateInfo], [CrateGroupInfo]])
    prost_opts = StringListAttribute(default=[])
    proto_compiler = FileAttribute(exec=True)

    tonic_plugin = FileAttribute(exec=True, default=None)
    # e.g. `--plugin=protoc-gen-tonic=%s`
    tonic_plugin_flag = StringAttribute(default=None)
    tonic_runtime = TargetAttribute(providers=[[CrateInfo], [CrateGroupInfo]], default=None)
    tonic_opts = StringListAttribute(default=[])

    def analyze(self):
        tonic_attrs = [self.tonic_plugin_flag, self.tonic_plugin, self.tonic_runtime]
        if any(attr is not None for attr in tonic_attrs) and not all(attr is not None for attr in tonic_attrs):
            raise ValueError("When one tonic attribute is added, all must be added")
        for flag in (self.prost_plugin_flag, self.tonic_plugin_flag):
            if flag is not None and "%s" not in flag:
                raise ValueError(f"plugin flag {flag!r} must contain a %s placeholder for the plugin path")

        toolchain = RustProstToolchain(
            prost_plugin=Executable.from_file(self.prost_plugin, name="protoc-gen-prost"),
            prost_plugin_flag=self.prost_plugin_flag,
            prost_runtime=self.prost_runtime,
            prost_opts=list(self.prost_opts),
            proto_compiler=Executable.from_file(self.proto_compiler, name="protoc"),
            protoc_opts=list(self.build_config.setting("protoc_opts")),
            tonic_plugin=(
                Executable.from_file(self.tonic_plugin, name="protoc-gen-tonic") if self.tonic_plugin else None
            ),
            tonic_plugin_flag=self.tonic_plugin_flag,
            tonic_runtime=self.tonic_runtime,
            tonic_opts=list(self.tonic_opts),
        )
        return [toolchain]


def _find_provider(providers: Sequence[Provider], provider_type):
    for provider in providers:
        if isinstance(provider, provider_type):
            return provider
    raise RuntimeError(f"couldn't find a {provider_type.__qualname__} in the list of providers")


class _RustProtoAspect(Aspect):
    attr_aspects = ("deps",)
    required_providers = (ProtoInfo,)

    prost_toolchain = ToolchainAttribute(RustProstToolchain)
    rust_toolchain = ToolchainAttribute(RustToolchain)
    rustfmt_toolchain = ToolchainAttribute(RustfmtToolchain, mandatory=False)

    is_tonic = False

    @property
    def proto_info_provider(self):
        return TonicProtoInfo if self.is_tonic else ProstProtoInfo

    def analyze(self):
        provider_type = self.proto_info_provider
        if provider_type in self.target:
            return []

        prost_toolchain = self.prost_toolchain
        runtime_deps = []
        for runtime in (prost_toolchain.prost_runtime, prost_toolchain.tonic_runtime):
            if runtime is None:
                continue
            runtime_deps += dep_variant_infos([runtime])

        proto_deps = self.rule_attr.deps if "deps" in self.rule_attr else []

        direct_deps = []
        transitive_deps = []
        for proto_dep in proto_deps:
            proto_info = proto_dep[provider_type]
            direct_deps.append(proto_info.dep_variant_info)
            transitive_deps.append(Depset([proto_info.dep_variant_info], transitive=[proto_info.transitive_dep_infos]))

        crate_name = name_to_crate_name(self.label.name)

        lib_rs, package_info_file = self._compile_proto(crate_name, self.target[ProtoInfo], proto_deps)
        dep_variant_info = self._compile_rust(crate_name, lib_rs, runtime_deps + direct_deps)

        return [
            provider_type(
                dep_variant_info=dep_variant_info,
                transitive_dep_infos=Depset(transitive=transitive_deps),
                package_info=package_info_file,
            ),
        ]

    def _compile_proto(self, crate_name: str, proto_info: ProtoInfo, deps: List[Target]) -> Tuple[File, File]:
        prost_toolchain = self.prost_toolchain
        kind = "tonic" if self.is_tonic else "prost"
        extension = TONIC_EXTENSION if self.is_tonic else PROST_EXTENSION
        provider_type = self.proto_info_provider

        deps_info_file = self.declare_file(f"{self.label.name}.{kind}_deps_info")
        dep_package_infos = [dep[provider_type].package_info for dep in deps]
        self.write(deps_info_file, "\n".join(file.path for file in dep_package_infos))

        package_info_file = self.declare_file(f"{self.label.name}.{kind}_package_info")
        lib_rs = self.declare_file(f"{self.label.name}.lib{extension}")

        tools = [PROTOC_WRAPPER.files, prost_toolchain.tools]

        args = [
            prost_toolchain.prost_plugin_flag % prost_toolchain.prost_plugin.executable_path,
            f"--prost_out={self.bin_dir}",
            *(f"--proto_path={proto_path}" for proto_path in proto_info.transitive_proto_path.to_list()),
            *prost_toolchain.protoc_opts,
            f"--protoc={prost_toolchain.proto_compiler.executable_path}",
            f"--out_librs={lib_rs.path}",
            f"--package_info_output={crate_name}={package_info_file.path}",
            f"--deps_info={deps_info_file.path}",
            "--prost_opt=compile_well_known_types",
            *(f"--prost_opt={opt}" for opt in prost_toolchain.prost_opts),
        ]

        if prost_toolchain.tonic_plugin is not None:
            args += [
                prost_toolchain.tonic_plugin_flag % prost_toolchain.tonic_plugin.executable_path,
                "--tonic_opt=no_include",
                *(f"--tonic_opt={opt}" for opt in prost_toolchain.tonic_opts),
            ]
        if self.is_tonic:
            if prost_toolchain.tonic_plugin is None:
                raise RuntimeError("the prost toolchain has no tonic plugin, tonic libraries cannot be generated")
            args.append("--is_tonic")

        rustfmt_toolchain: Optional[RustfmtToolchain] = self.rustfmt_toolchain
        if rustfmt_toolchain is not None:
            args.append(f"--rustfmt={rustfmt_toolchain.rustfmt.executable_path}")
            tools.append(rustfmt_toolchain.all_files)

        args += [src.path for src in proto_info.direct_sources]

        self.run(
            PROTOC_WRAPPER,
            *args,
            inputs=Depset([deps_info_file, *dep_package_infos], transitive=[proto_info.transitive_sources]),
            outputs=[lib_rs, package_info_file],
            tools=Depset(transitive=tools),
            mnemonic=prost_toolchain.mnemonic,
            progress_message=f"Generating Rust {kind} code for {self.label}",
        )

        return lib_rs, package_info_file

    def _compile_rust(self, crate_name: str, src: File, deps: List[DepVariantInfo]) -> DepVariantInfo:
        toolchain = self.rust_toolchain
        output_hash = repr(abs(string_hash(src.path)))

        lib = self.declare_file(f"lib{crate_name}-{output_hash}.rlib")
        rmeta = self.declare_file(f"lib{crate_name}-{output_hash}.rmeta")

        providers = rustc_compile_action(
            self,
            toolchain,
            CrateInfo(
                name=crate_name,
                type="rlib",
                root=src,
                srcs=Depset([src]),
                deps=Depset(deps),
                output=lib,
                metadata=rmeta,
                edition=RUST_EDITION,
                owner=self.label,
            ),
            output_hash=output_hash,
        )

        return DepVariantInfo(
            crate_info=_find_provider(providers, CrateInfo),
            dep_info=_find_provider(providers, DepInfo),
            cc_info=_find_provider(providers, CcInfo),
            build_info=None,
        )


class RustProstAspect(_RustProtoAspect):
    """
    Generates and compiles the Rust code for `ProtoLibrary` targets and their dependencies with prost
    """

    is_tonic = False


class RustTonicAspect(_RustProtoAspect):
    """
    Generates and compiles the Rust code for `ProtoLibrary` targets and their dependencies with prost and tonic
    """

    is_tonic = True


class _RustProtoLibraryRule(Rule):
    is_tonic = False

    def analyze(self):
        provider_type = TonicProtoInfo if self.is_tonic else ProstProtoInfo
        rust_proto_info = self.proto[provider_type]
        dep_variant_info = rust_proto_info.dep_variant_info

        return [
            DefaultInfo(files=Depset([dep_variant_info.crate_info.output])),
            CrateGroupInfo(
                dep_variant_infos=Depset([dep_variant_info], transitive=[rust_proto_info.transitive_dep_infos]),
            ),
        ]


class RustProstLibrary(_RustProtoLibraryRule):
    """
    A Rust library generated from a `ProtoLibrary` with prost
    """

    proto = TargetAttribute(providers=[ProtoInfo], aspects=[RustProstAspect])

    is_tonic = False


class RustTonicLibrary(_RustProtoLibraryRule):
    """
    A Rust library generated from a `ProtoLibrary` with prost and tonic
    """

    proto = TargetAttribute(providers=[ProtoInfo], aspects=[RustTonicAspect])

    is_tonic = True
