import copy
from typing import Dict, Generic, Optional, TypeVar

from .depset import Depset

_JSON_PROVIDER_SENTINEL = "$rules_rust_provider"

T = TypeVar("T")


class Field(Generic[T]):
    name: str
    has_default: bool
    default: Optional[T]
    ty: type

    def __init__(self, ty: type, **kwargs):
        self.ty = ty
        self.name = None
        if "default" in kwargs:
            self.has_default = True
            self.default = kwargs.pop("default")
        else:
            self.has_default = False
            self.default = None

        if kwargs:
            raise TypeError(f"unexpected arguments {', '.join(kwargs.keys())}")

    def __get__(self, obj, objtype=None):
        if obj is None:
            return self
        return obj._data[self.name]


class ProviderMeta(type):
    fields: Dict[str, Field]

    def __init__(cls, name, bases, dct):
        super().__init__(name, bases, dct)

        # Gather fields (including inherited ones) and provide names
        cls.fields = {}
        for base in reversed(cls.__mro__[1:]):
            cls.fields.update(getattr(base, "fields", {}))
        for k, v in dct.items():
            if not isinstance(v, Field):
                continue
            v.name = k
            cls.fields[k] = v


class Provider(metaclass=ProviderMeta):
    def __init__(self, **kwargs):
        fields = self.__class__.fields
        self._data = kwargs

        for k in self._data:
            if k not in fields:
                raise TypeError(f"provider {self.__class__.__name__} has no field {k!r}")
        for k, field in fields.items():
            if k not in self._data:
                if field.has_default:
                    default = field.default
                    if isinstance(default, (dict, list)):
                        default = copy.copy(default)
                    self._data[k] = default
                else:
                    raise TypeError(f"provider {self.__class__.__name__} requires a value for field {k!r}")

    def __setattr__(self, name, value):
        if name != "_data":
            raise AttributeError(f"provider {self.__class__.__name__} is immutable")
        super().__setattr__(name, value)

    def to_json(self):
        return {
            _JSON_PROVIDER_SENTINEL: {
                "qualname": self.__class__.__qualname__,
                "data": self._data,
            }
        }

    def __repr__(self) -> str:
        s = f"{self.__class__.__qualname__}(\n"
        for k, v in self._data.items():
            if isinstance(v, Depset):
                v = f"depset(<{len(v.to_list())} items>)"
            else:
                v = repr(v)
            s += f"  {k}={v},\n"
        s += ")"
        return s


class DefaultInfo(Provider):
    files = Field(Depset, default=Depset())
    executable = Field(Optional[object], default=None)
    runfiles = Field(Depset, default=Depset())


class OutputGroupInfo(Provider):
    groups = Field(Dict[str, Depset], default={})

    def __contains__(self, name: str) -> bool:
        return name in self.groups

    def __getitem__(self, name: str) -> Depset:
        try:
            return self.groups[name]
        except KeyError:
            raise KeyError(f"no output group named {name!r}") from None

    @classmethod
    def merge(cls, *infos: "OutputGroupInfo") -> "OutputGroupInfo":
        """
        Combines the groups of several infos, unioning groups present in more than one
        """
        groups = {}
        for info in infos:
            for name, files in info.groups.items():
                if name in groups:
                    groups[name] = Depset(transitive=[groups[name], files])
                else:
                    groups[name] = files
        return cls(groups=groups)
