from __future__ import annotations

from typing import List, Optional

from .artifact import File
from .depset import Depset
from .provider import Provider, Field


class Executable(Provider):
    name = Field(Optional[str], default=None)

    executable_path = Field(str)
    # Files that must be present for the executable to run (the binary itself, shared libraries, data)
    files = Field(Depset, default=Depset())

    search_paths = Field(List[str], default=[])

    @classmethod
    def from_file(cls, file: File, *, name: Optional[str] = None, extra_files: Depset = Depset()) -> Executable:
        return cls(
            name=name,
            executable_path=file.path,
            files=Depset([file], transitive=[extra_files]),
        )

    def add_dependency_executable(self, *executables: Executable) -> Executable:
        search_paths = [*self.search_paths]
        files = [self.files]
        for executable in executables:
            files.append(executable.files)
            search_paths += executable.search_paths

        return Executable(
            name=self.name,
            executable_path=self.executable_path,
            files=Depset(transitive=files),
            search_paths=search_paths,
        )
