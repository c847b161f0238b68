from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Generic, List, Optional, Sequence, Type, TypeVar, Union

from .artifact import File
from .label import Label
from .provider import DefaultInfo, Provider

if TYPE_CHECKING:
    from .aspect import Aspect
    from .rule import Rule, Target

T = TypeVar("T")


class Attribute(Generic[T]):
    name: str
    has_default: bool
    default: Optional[T]

    NotSet = object()

    def __init__(self, **kwargs):
        self.name = None
        if "default" in kwargs:
            self.has_default = True
            self.default = kwargs.pop("default")
        else:
            self.has_default = False
            self.default = None

        if kwargs:
            raise TypeError(f"unexpected arguments {', '.join(kwargs.keys())}")

    def coerce_source(self, source, *, package=None):
        """
        Validates the value for the attribute passed in at load time and performs any necessary conversion
        """

        if Attribute.is_unresolved_value(source):
            # Validation is generally not possible for unresolved values
            return source

        # By default, perform value coercion eagerly to provide more proximate error messages
        try:
            return self.coerce_value(source)
        except (TypeError, ValueError) as ex:
            raise type(ex)(f"invalid value for attribute {self.name!r}: {ex}") from ex

    def coerce_value(self, value):
        """
        Validates the value for the attribute that has been resolved and performs any necessary conversion
        """
        return value

    async def resolve_from_source(self, source: Union[T, Attribute.NotSet], *, rule: Rule):
        from .config import Selection

        if isinstance(source, Selection):
            source = self.coerce_source(source.resolve(rule.build_config), package=rule.label.package)

        if source is Attribute.NotSet:
            # This should already have been checked
            assert self.is_optional
            if self.has_default:
                source = self.coerce_source(self.default, package=rule.label.package)
            else:
                source = None

        return await self.resolve_value(source, rule=rule)

    async def resolve_value(self, value, *, rule: Rule):
        return value

    def __get__(self, obj, objtype=None):
        if obj is None:
            return self
        return obj.attributes_resolved[self.name]

    @property
    def is_optional(self) -> bool:
        return self.has_default

    @classmethod
    def is_unresolved_value(cls, value):
        from .config import Selection

        return isinstance(value, Selection)


class BoolAttribute(Attribute[bool]):
    def coerce_value(self, value):
        if not isinstance(value, bool):
            raise TypeError(f"expected bool, got {type(value).__name__}")
        return value


class StringAttribute(Attribute[str]):
    def coerce_value(self, value):
        if value is None and self.has_default and self.default is None:
            return None
        if not isinstance(value, str):
            raise TypeError(f"expected string, got {type(value).__name__}")
        return value


class StringListAttribute(Attribute[List[str]]):
    def coerce_value(self, value):
        if value is None and self.has_default and self.default is None:
            return None
        if isinstance(value, str) or not isinstance(value, (list, tuple)):
            raise TypeError("expected list of strings")
        for item in value:
            if not isinstance(item, str):
                raise TypeError(f"expected list of strings, found {type(item).__name__}")
        return list(value)


class StringDictAttribute(Attribute[Dict[str, str]]):
    def coerce_value(self, value):
        if not isinstance(value, dict):
            raise TypeError("expected dict of strings")
        for k, v in value.items():
            if not isinstance(k, str) or not isinstance(v, str):
                raise TypeError("expected dict of strings")
        return dict(value)


def _coerce_label(source, package: Optional[Label]) -> Label:
    if isinstance(source, Label):
        label = source
    elif isinstance(source, str):
        label = Label(source)
    else:
        raise TypeError(f"expected label, but got {source!r}")
    # Labels are only made absolute when we know the package they were written in
    if package is not None:
        label = label.absolute(package)
    return label


class LabelAttribute(Attribute[Label]):
    def coerce_source(self, source, *, package=None):
        if Attribute.is_unresolved_value(source):
            return source
        if source is None and self.has_default and self.default is None:
            return None
        try:
            return _coerce_label(source, package)
        except (TypeError, ValueError) as ex:
            raise type(ex)(f"invalid value for attribute {self.name!r}: {ex}") from ex

    async def resolve_value(self, value, *, rule: Rule):
        if value is None:
            return None
        return value.absolute(rule.label.package)


class LabelListAttribute(Attribute[List[Label]]):
    def coerce_source(self, source, *, package=None):
        if Attribute.is_unresolved_value(source):
            return source
        if isinstance(source, (str, Label)) or not isinstance(source, (list, tuple)):
            raise TypeError(f"invalid value for attribute {self.name!r}: expected list of labels")

        coerced = []
        for v in source:
            try:
                coerced.append(_coerce_label(v, package))
            except (TypeError, ValueError) as ex:
                raise type(ex)(f"invalid value for attribute {self.name!r}: {ex}") from ex
        return coerced

    async def resolve_value(self, value, *, rule: Rule):
        return [label.absolute(rule.label.package) for label in value]


def _check_providers(attribute: Attribute, target: Target, providers: Sequence):
    """
    `providers` is either a list of provider types which must all be present, or a list of such lists of which
    at least one must be satisfied entirely.
    """
    if not providers:
        return
    if all(isinstance(p, (list, tuple)) for p in providers):
        alternatives = providers
    else:
        alternatives = [providers]
    for alternative in alternatives:
        if all(provider in target for provider in alternative):
            return
    expected = " or ".join("[" + ", ".join(p.__qualname__ for p in alt) + "]" for alt in alternatives)
    raise RuntimeError(
        f"target {target.label} given for attribute {attribute.name!r} does not provide the required providers "
        f"(expected {expected})"
    )


class TargetAttribute(LabelAttribute):
    """
    A dependency on another target, resolved to the analyzed target
    """

    def __init__(
        self, *, providers: Sequence = (), aspects: Sequence[Type[Aspect]] = (), exec: bool = False, **kwargs
    ):
        super().__init__(**kwargs)
        self.providers = list(providers)
        self.aspects = list(aspects)
        self.exec = exec

    async def resolve_value(self, value, *, rule: Rule):
        if value is None:
            return None
        target = await rule.load_target(value.absolute(rule.label.package), aspects=self.aspects, exec=self.exec)
        _check_providers(self, target, self.providers)
        return target


class TargetListAttribute(LabelListAttribute):
    def __init__(
        self, *, providers: Sequence = (), aspects: Sequence[Type[Aspect]] = (), exec: bool = False, **kwargs
    ):
        super().__init__(**kwargs)
        self.providers = list(providers)
        self.aspects = list(aspects)
        self.exec = exec

    async def resolve_value(self, value, *, rule: Rule):
        targets = await rule.gather(
            [
                rule.load_target(label.absolute(rule.label.package), aspects=self.aspects, exec=self.exec)
                for label in value
            ]
        )
        for target in targets:
            _check_providers(self, target, self.providers)
        return targets


def _files_of(attribute: Attribute, target: Target, allow_files: Optional[Sequence[str]]) -> List[File]:
    files = target[DefaultInfo].files.to_list() if DefaultInfo in target else []
    if allow_files is None:
        return files
    matching = [f for f in files if any(f.basename.endswith(ext) for ext in allow_files)]
    if not matching:
        raise RuntimeError(
            f"target {target.label} given for attribute {attribute.name!r} does not produce any files matching "
            f"{', '.join(allow_files)}"
        )
    return matching


class FileAttribute(LabelAttribute):
    def __init__(self, *, allow_files: Optional[Sequence[str]] = None, exec: bool = False, **kwargs):
        super().__init__(**kwargs)
        self.allow_files = list(allow_files) if allow_files is not None else None
        self.exec = exec

    async def resolve_value(self, value, *, rule: Rule):
        if value is None:
            return None
        target = await rule.load_target(value.absolute(rule.label.package), exec=self.exec)
        files = _files_of(self, target, self.allow_files)
        if len(files) != 1:
            raise RuntimeError(
                f"expected a single file for attribute {self.name!r}, but {target.label} provides {len(files)}"
            )
        return files[0]


class FileListAttribute(LabelListAttribute):
    def __init__(self, *, allow_files: Optional[Sequence[str]] = None, **kwargs):
        super().__init__(**kwargs)
        self.allow_files = list(allow_files) if allow_files is not None else None

    async def resolve_value(self, value, *, rule: Rule):
        targets = await rule.gather([rule.load_target(label.absolute(rule.label.package)) for label in value])
        files = []
        for target in targets:
            for file in _files_of(self, target, self.allow_files):
                if file not in files:
                    files.append(file)
        return files


class ProviderAttribute(LabelAttribute):
    def __init__(self, provider_type: Type[Provider], *, exec: bool = False, **kwargs):
        super().__init__(**kwargs)

        self.provider_type = provider_type
        self.exec = exec

    async def resolve_value(self, value, *, rule: Rule):
        if value is None:
            return None
        return await rule.resolve_provider(self.provider_type, value.absolute(rule.label.package), exec=self.exec)


class ToolchainAttribute(Attribute[Provider]):
    """
    A toolchain provider which defaults to the toolchain registered with the workspace
    """

    def __init__(self, provider_type: Type[Provider], *, mandatory: bool = True, **kwargs):
        super().__init__(**kwargs)
        self.provider_type = provider_type
        self.mandatory = mandatory

    @property
    def is_optional(self) -> bool:
        return True

    def coerce_source(self, source, *, package=None):
        if Attribute.is_unresolved_value(source):
            return source
        return _coerce_label(source, package)

    async def resolve_value(self, value, *, rule: Rule):
        if value is not None:
            return await rule.resolve_provider(self.provider_type, value.absolute(rule.label.package))

        return await rule.resolve_toolchain(self.provider_type, mandatory=self.mandatory)
