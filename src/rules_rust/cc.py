from typing import List

from .artifact import File
from .attribute import FileAttribute, StringListAttribute
from .depset import Depset
from .provider import DefaultInfo, Field, Provider
from .rule import Rule


class LinkerInput(Provider):
    owner = Field(object, default=None)
    libraries = Field(List[File], default=[])
    user_link_flags = Field(List[str], default=[])


class CcInfo(Provider):
    """
    Native link information propagated from Rust (and native) libraries to whatever finally links them
    """

    linker_inputs = Field(Depset, default=Depset())

    @classmethod
    def merge(cls, *infos: "CcInfo") -> "CcInfo":
        return cls(linker_inputs=Depset(transitive=[info.linker_inputs for info in infos], order="topological"))

    def libraries(self) -> List[File]:
        libraries = []
        for linker_input in self.linker_inputs.to_list():
            for library in linker_input.libraries:
                if library not in libraries:
                    libraries.append(library)
        return libraries

    def user_link_flags(self) -> List[str]:
        flags = []
        for linker_input in self.linker_inputs.to_list():
            flags += linker_input.user_link_flags
        return flags


class CcImport(Rule):
    """
    Makes a prebuilt native library available to Rust crates depending on it
    """

    static_library = FileAttribute(allow_files=[".a", ".lib"], default=None)
    shared_library = FileAttribute(allow_files=[".so", ".dylib", ".dll"], default=None)
    linkopts = StringListAttribute(default=[])

    def analyze(self):
        libraries = [library for library in (self.static_library, self.shared_library) if library is not None]
        if not libraries and not self.linkopts:
            raise RuntimeError("at least one of static_library, shared_library or linkopts must be given")
        linker_input = LinkerInput(owner=self.label, libraries=libraries, user_link_flags=self.linkopts)
        return [
            CcInfo(linker_inputs=Depset([linker_input])),
            DefaultInfo(files=Depset(libraries)),
        ]
