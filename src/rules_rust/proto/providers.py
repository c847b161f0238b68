from typing import List, Optional

from ..artifact import File
from ..depset import Depset
from ..exec import Executable
from ..provider import Field, Provider
from ..rule import Target
from ..rust.providers import DepVariantInfo


class ProtoInfo(Provider):
    direct_sources = Field(List[File])
    transitive_sources = Field(Depset)
    # Directories protoc must search for imports, relative to the exec root
    transitive_proto_path = Field(Depset)
    proto_source_root = Field(str, default=".")


class _RustProtoInfo(Provider):
    dep_variant_info = Field(DepVariantInfo)
    transitive_dep_infos = Field(Depset)
    # Maps the message types of the library to the Rust paths they were generated at
    package_info = Field(File)


class ProstProtoInfo(_RustProtoInfo):
    """
    The Rust crate generated for a `ProtoLibrary` with prost
    """


class TonicProtoInfo(_RustProtoInfo):
    """
    The Rust crate generated for a `ProtoLibrary` with prost and tonic
    """


class RustProstToolchain(Provider):
    prost_plugin = Field(Executable)
    prost_plugin_flag = Field(str)
    prost_runtime = Field(Target)
    prost_opts = Field(List[str], default=[])
    proto_compiler = Field(Executable)
    protoc_opts = Field(List[str], default=[])

    tonic_plugin = Field(Optional[Executable], default=None)
    tonic_plugin_flag = Field(Optional[str], default=None)
    tonic_runtime = Field(Optional[Target], default=None)
    tonic_opts = Field(List[str], default=[])

    @property
    def is_tonic(self) -> bool:
        return self.tonic_runtime is not None

    @property
    def mnemonic(self) -> str:
        return "TonicGenProto" if self.is_tonic else "ProstGenProto"

    @property
    def tools(self) -> Depset:
        files = [self.prost_plugin.files, self.proto_compiler.files]
        if self.tonic_plugin is not None:
            files.append(self.tonic_plugin.files)
        return Depset(transitive=files)
