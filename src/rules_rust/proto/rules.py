from ..attribute import FileListAttribute, TargetListAttribute
from ..depset import Depset
from ..provider import DefaultInfo
from ..rule import Rule
from .providers import ProtoInfo


class ProtoLibrary(Rule):
    """
    A set of `.proto` files and the proto libraries they import
    """

    srcs = FileListAttribute(allow_files=[".proto"])
    deps = TargetListAttribute(providers=[ProtoInfo], default=[])

    def analyze(self):
        proto_source_root = self.label.workspace_root or "."

        return [
            ProtoInfo(
                direct_sources=list(self.srcs),
                transitive_sources=Depset(
                    self.srcs, transitive=[dep[ProtoInfo].transitive_sources for dep in self.deps]
                ),
                transitive_proto_path=Depset(
                    [proto_source_root], transitive=[dep[ProtoInfo].transitive_proto_path for dep in self.deps]
                ),
                proto_source_root=proto_source_root,
            ),
            DefaultInfo(files=Depset(self.srcs)),
        ]
