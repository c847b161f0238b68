from __future__ import annotations

from typing import Any, Dict, Tuple, Type

from .attribute import Attribute
from .config import BuildConfig
from .provider import Provider
from .rule import AnalysisContext, Target, _AttributeCollectingMeta


class AspectMeta(_AttributeCollectingMeta):
    def __init__(cls, name, bases, dct):
        super().__init__(name, bases, dct)

        for k, attribute in cls.attributes.items():
            if not attribute.is_optional:
                raise TypeError(f"attribute {k!r} of aspect {name} must have a default value")

    def __call__(cls, *args, **kwargs):
        raise TypeError("aspects are applied by attributes or the analysis host, they cannot be invoked directly")


class RuleAttributes:
    """
    Read-only view of the resolved attributes of the target an aspect is applied to
    """

    def __init__(self, values: Dict[str, Any]):
        self._values = dict(values)

    def __getattr__(self, name: str):
        try:
            return self.__dict__["_values"][name]
        except KeyError:
            raise AttributeError(f"target has no attribute {name!r}") from None

    def __contains__(self, name: str) -> bool:
        return name in self._values


class Aspect(AnalysisContext, metaclass=AspectMeta):
    """
    Logic run over an already analyzed target that attaches extra providers (and actions) to it.

    `attr_aspects` names the attributes of the target along which the aspect propagates: the dependencies found
    in those attributes have the aspect applied before the aspect runs on the target itself. Targets lacking any
    of `required_providers` are skipped.
    """

    attr_aspects: Tuple[str, ...] = ()
    required_providers: Tuple[Type[Provider], ...] = ()

    target: Target
    rule_attr: RuleAttributes

    def __init__(self, target: Target, rule_attr: RuleAttributes, build_config: BuildConfig, *, features=()):
        self.target = target
        self.rule_attr = rule_attr
        self._init_context(target.label, {}, build_config, tags=target.tags, features=features)

    @classmethod
    def applies_to(cls, target: Target) -> bool:
        return all(provider in target for provider in cls.required_providers)

    @classmethod
    def _instantiate(cls, target: Target, rule_attr: RuleAttributes, build_config: BuildConfig, *, features=()):
        # The metaclass blocks direct calls so we construct the instance manually
        instance = cls.__new__(cls)
        instance.__init__(target, rule_attr, build_config, features=features)
        return instance
