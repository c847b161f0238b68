from __future__ import annotations

from contextlib import contextmanager
from typing import TYPE_CHECKING, Dict, Iterator, List, Optional

from ._reflect import describe_location
from .label import Label

if TYPE_CHECKING:
    from .rule import RuleInvocation

_CURRENT_PACKAGE: Optional[Package] = None


class Package:
    """
    The rule invocations made while loading one BUILD file
    """

    def __init__(self, label: Label):
        if isinstance(label, str):
            label = Label(label)
        if label.is_package_relative or ":" in str(label).split("//", 1)[1]:
            raise ValueError(f"invalid package label {label}")
        self.label = label
        self._invocations: Dict[str, "RuleInvocation"] = {}

    def add(self, invocation: "RuleInvocation"):
        if invocation.name in self._invocations:
            previous = self._invocations[invocation.name]
            raise ValueError(
                f"target {invocation.name!r} defined more than once in package {self.label} (previously defined at "
                f"{describe_location(previous.instantiation_location)})"
            )
        self._invocations[invocation.name] = invocation

    def get(self, name: str) -> Optional["RuleInvocation"]:
        return self._invocations.get(name)

    @property
    def targets(self) -> List["RuleInvocation"]:
        return list(self._invocations.values())

    def __contains__(self, name: str) -> bool:
        return name in self._invocations

    def __repr__(self):
        return f"<package {self.label} ({len(self._invocations)} targets)>"


@contextmanager
def package_scope(package: Package) -> Iterator[Package]:
    """
    Rule invocations made inside this scope are recorded in `package`
    """
    global _CURRENT_PACKAGE

    previous = _CURRENT_PACKAGE
    _CURRENT_PACKAGE = package
    try:
        yield package
    finally:
        _CURRENT_PACKAGE = previous


def _add_rule_invocation_to_package(invocation):
    if _CURRENT_PACKAGE is None:
        return
    _CURRENT_PACKAGE.add(invocation)


def _get_package_optional() -> Optional[Label]:
    if _CURRENT_PACKAGE is None:
        return None
    return _CURRENT_PACKAGE.label
