from __future__ import annotations

import logging
import runpy
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence, Type, Union

from .label import Label
from .package import Package, package_scope
from .provider import Provider

logger = logging.getLogger(__name__)

BUILD_FILE_NAME = "BUILD.py"
WORKSPACE_FILE_NAME = "WORKSPACE.py"


class ToolchainRegistration:
    def __init__(self, provider_type: Type[Provider], target: Label, target_triples: Optional[Sequence[str]]):
        self.provider_type = provider_type
        self.target = target
        self.target_triples = list(target_triples) if target_triples is not None else None

    def matches(self, provider_type: Type[Provider], triple: str) -> bool:
        if not issubclass(self.provider_type, provider_type):
            return False
        return self.target_triples is None or triple in self.target_triples

    def __repr__(self):
        return f"<toolchain {self.provider_type.__qualname__} from {self.target}>"


class Workspace:
    """
    The set of packages (and registered toolchains) analysis operates on. Packages are either loaded from `BUILD.py`
    files below `root` or defined in-process with `Workspace.package`.
    """

    def __init__(self, name: str = "", *, root: Optional[Union[str, Path]] = None):
        if not isinstance(name, str):
            raise TypeError("name must be a str")
        self.name = name
        self.root = Path(root) if root is not None else None
        self.packages: Dict[Label, Package] = {}
        self.toolchains: List[ToolchainRegistration] = []

    def _normalize_package_label(self, label: Union[str, Label]) -> Label:
        if isinstance(label, str):
            label = Label(label)
        if not isinstance(label, Label):
            raise TypeError("package must be a Label or string")
        if label.is_package_relative:
            raise ValueError(f"package label {label} must be absolute")
        if label.workspace_name == self.name and self.name:
            label = Label(f"//{label.package_path}")
        return label

    @contextmanager
    def package(self, label: Union[str, Label]) -> Iterator[Package]:
        label = self._normalize_package_label(label)
        package = self.packages.get(label)
        if package is None:
            package = Package(label)
            self.packages[label] = package
        with package_scope(package):
            yield package

    def load_build_file(self, path: Union[str, Path]) -> Package:
        if self.root is None:
            raise RuntimeError("workspace has no root directory to load BUILD files from")
        path = Path(path).resolve()
        try:
            package_path = path.parent.relative_to(self.root.resolve())
        except ValueError:
            raise RuntimeError(f"BUILD file {path} is outside of the workspace root {self.root}") from None
        package_path = "" if str(package_path) == "." else package_path.as_posix()

        logger.debug("loading BUILD file %s", path)
        with self.package(f"//{package_path}") as package:
            runpy.run_path(str(path), run_name=f"build_file_{package_path.replace('/', '_')}")
        return package

    def load_all(self) -> List[Package]:
        if self.root is None:
            raise RuntimeError("workspace has no root directory to load BUILD files from")
        workspace_file = self.root / WORKSPACE_FILE_NAME
        if workspace_file.is_file():
            logger.debug("loading workspace file %s", workspace_file)
            # Workspace files register toolchains through the `workspace` global
            runpy.run_path(str(workspace_file), init_globals={"workspace": self}, run_name="workspace_file")
        return [self.load_build_file(path) for path in sorted(self.root.rglob(BUILD_FILE_NAME))]

    def register_toolchain(
        self,
        provider_type: Type[Provider],
        target: Union[str, Label],
        *,
        target_triples: Optional[Sequence[str]] = None,
    ):
        """
        Registers `target` as providing the toolchain `provider_type`. Earlier registrations take precedence, and
        `target_triples` restricts the registration to configurations targeting those triples.
        """
        if not (isinstance(provider_type, type) and issubclass(provider_type, Provider)):
            raise TypeError("`provider_type` must be a provider class")
        if isinstance(target, str):
            target = Label(target)
        if not isinstance(target, Label):
            raise TypeError("`target` must be a Label or string")
        if target.is_package_relative:
            raise ValueError(f"toolchain target {target} must be an absolute label")
        self.toolchains.append(ToolchainRegistration(provider_type, target, target_triples))

    def find_toolchain(self, provider_type: Type[Provider], triple: str) -> Optional[ToolchainRegistration]:
        for registration in self.toolchains:
            if registration.matches(provider_type, triple):
                return registration
        return None

    def lookup(self, label: Label):
        """
        Finds the rule invocation for a target label, or `None` if the label names no rule
        """
        package = self.packages.get(self._normalize_package_label(label.package))
        if package is None:
            return None
        return package.get(label.name)

    def has_package(self, label: Label) -> bool:
        return self._normalize_package_label(label.package) in self.packages

    def source_file_exists(self, label: Label) -> bool:
        if self.root is None or label.is_external:
            # Without a root directory, source files can't be checked
            return True
        package_path = label.package_path
        relative = f"{package_path}/{label.name}" if package_path else label.name
        return (self.root / relative).is_file()

    @classmethod
    def from_directory(cls, root: Union[str, Path], *, name: str = "") -> Workspace:
        workspace = cls(name, root=root)
        workspace.load_all()
        return workspace
