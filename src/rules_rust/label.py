from __future__ import annotations

import re
from typing import Optional


class Label:
    """
    A target or package name such as `//a/b:c`, `@repo//a:c` or the package relative `:c`
    """

    _repr: str

    def __init__(self, repr: str):
        if not isinstance(repr, str):
            raise TypeError("labels must be strings")
        if not repr:
            raise ValueError("labels must not be empty")
        if repr.count("//") > 1 or repr.count(":") > 1:
            raise ValueError(f"invalid label {repr!r}")
        self._repr = repr

    @property
    def is_package_relative(self) -> bool:
        return not self.is_workspace_relative and not self.is_workspace_absolute

    @property
    def is_workspace_relative(self) -> bool:
        return self._repr.startswith("//")

    @property
    def is_workspace_absolute(self) -> bool:
        return self._repr.startswith("@")

    @property
    def workspace_name(self) -> Optional[str]:
        match = _ABSOLUTE_WORKSPACE_REGEX.match(self._repr)
        if match is None:
            return None
        return match.group(1)

    @property
    def is_external(self) -> bool:
        """
        Whether this label points into a repository other than the main one
        """
        return self.workspace_name not in (None, "")

    @property
    def workspace_root(self) -> str:
        workspace_name = self.workspace_name
        if not workspace_name:
            return ""
        return f"external/{workspace_name}"

    @property
    def package_path(self) -> str:
        """
        The package portion of the label without the repository prefix, e.g. `a/b` for `@x//a/b:c`
        """
        if self.is_package_relative:
            raise ValueError(f"package relative label {self} has no package path")
        after_slashes = self._repr.split("//", 1)[1]
        return after_slashes.split(":", 1)[0]

    @property
    def name(self) -> str:
        if ":" in self._repr.split("//", 1)[-1]:
            return self._repr.rsplit(":", 1)[1]
        return self._repr.rsplit("/", 1)[-1]

    @property
    def package(self) -> Label:
        """
        The label of the package containing this label, e.g. `//a/b` for `//a/b:c`
        """
        if self.is_package_relative:
            raise ValueError(f"package relative label {self} has no package")
        prefix, after_slashes = self._repr.split("//", 1)
        return Label(f"{prefix}//{after_slashes.split(':', 1)[0]}")

    def absolute(self, package: Label) -> Label:
        """
        Resolves a label written inside `package` to an absolute label
        """
        if not self.is_package_relative:
            return self
        if self._repr.startswith(":"):
            return Label(package._repr + self._repr)
        return Label(package._repr + ":" + self._repr)

    def canonical(self) -> Label:
        """
        The label with its target name spelled out, e.g. `//a/b:b` for `//a/b`
        """
        if self.is_package_relative or ":" in self._repr.split("//", 1)[1] or not self.name:
            return self
        return Label(f"{self._repr}:{self.name}")

    def __str__(self):
        return self._repr

    def __repr__(self):
        return f"Label({self._repr!r})"

    def __eq__(self, obj):
        return isinstance(obj, Label) and self._repr == obj._repr

    def __lt__(self, obj):
        return self._repr < obj._repr

    def __hash__(self):
        return self._repr.__hash__()


_ABSOLUTE_WORKSPACE_REGEX = re.compile(r"^@([^/]*)//")
