from __future__ import annotations

from pathlib import PurePosixPath
from typing import Optional

from .label import Label


class File:
    """
    A file known to the analysis: either a source file in the workspace or an output declared by a rule
    """

    path: str
    short_path: str
    owner: Optional[Label]
    is_source: bool
    is_directory: bool
    root: str

    def __init__(
        self,
        short_path: str,
        *,
        owner: Optional[Label] = None,
        root: str = "",
        is_directory: bool = False,
    ):
        if not isinstance(short_path, str):
            raise TypeError("file paths must be strings")
        self.short_path = short_path
        self.owner = owner
        self.root = root
        self.is_source = not root
        self.is_directory = is_directory
        if root:
            self.path = f"{root}/{short_path}"
        else:
            self.path = short_path

    @property
    def basename(self) -> str:
        return PurePosixPath(self.short_path).name

    @property
    def dirname(self) -> str:
        parent = str(PurePosixPath(self.path).parent)
        return "" if parent == "." else parent

    @property
    def extension(self) -> str:
        suffix = PurePosixPath(self.short_path).suffix
        return suffix[1:] if suffix else ""

    def to_json(self):
        return {_JSON_FILE_SENTINEL: self.path}

    def __str__(self):
        return self.path

    def __repr__(self):
        kind = "source" if self.is_source else "generated"
        return f"<{kind} file {self.path}>"

    def __eq__(self, obj):
        return isinstance(obj, File) and self.path == obj.path and self.is_directory == obj.is_directory

    def __hash__(self):
        return hash((self.path, self.is_directory))


_JSON_FILE_SENTINEL = "$rules_rust_file"


def source_file(label: Label) -> File:
    package_path = label.package_path
    short_path = f"{package_path}/{label.name}" if package_path else label.name
    workspace_root = label.workspace_root
    if workspace_root:
        short_path = f"{workspace_root}/{short_path}"
    return File(short_path, owner=label)
