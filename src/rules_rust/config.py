from __future__ import annotations

import platform
from pathlib import Path
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional, Tuple, Type, Union

import toml

_JSON_OPTION_SENTINEL = "$rules_rust_option"

_OPTIONS_BY_NAME: Dict[str, Type[Option]] = {}


class OptionMeta(type):
    def __init__(cls, name, bases, dct):
        super().__init__(name, bases, dct)

        if dct.get("option_name") is not None:
            _OPTIONS_BY_NAME[dct["option_name"]] = cls

    def to_json(cls):
        return {_JSON_OPTION_SENTINEL: cls.__qualname__}

    def __repr__(cls):
        return f"<option {cls.__qualname__}>"


class Option(metaclass=OptionMeta):
    """
    A build option. Direct subclasses of `Option` are option kinds (e.g. `CompilationMode`); their subclasses are
    the values the option can take (e.g. `Optimized`).
    """

    option_name: Optional[str] = None
    value_name: Optional[str] = None
    default: Optional[Type[Option]] = None

    @classmethod
    def get_or_default(cls, build_config):
        return build_config.options.get(cls) or cls.default

    @classmethod
    def kind(cls) -> Type[Option]:
        for klass in cls.__mro__:
            if Option in klass.__bases__:
                return klass
        raise TypeError(f"{cls.__qualname__} is not an option")

    @classmethod
    def parse(cls, value_name: str) -> Type[Option]:
        for subclass in _all_subclasses(cls):
            if subclass.value_name == value_name:
                return subclass
        known = ", ".join(sorted(sub.value_name for sub in _all_subclasses(cls) if sub.value_name))
        raise ValueError(f"invalid value {value_name!r} for option {cls.option_name!r} (expected one of {known})")

    @staticmethod
    def by_name(option_name: str) -> Type[Option]:
        try:
            return _OPTIONS_BY_NAME[option_name]
        except KeyError:
            raise ValueError(f"unknown build option {option_name!r}") from None


def _all_subclasses(cls):
    for subclass in cls.__subclasses__():
        yield subclass
        yield from _all_subclasses(subclass)


class Selection:
    def __init__(self, mapping, default):
        self.mapping = mapping
        self.default = default

    def resolve(self, build_config: BuildConfig):
        for k, v in self.mapping.items():
            if build_config[k.kind()] == k:
                return v
        return self.default


def select(mapping, default):
    return Selection(mapping, default)


class CompilationMode(Option):
    option_name = "compilation_mode"


class Fastbuild(CompilationMode):
    value_name = "fastbuild"


class Optimized(CompilationMode):
    value_name = "opt"


class Debug(CompilationMode):
    value_name = "dbg"


CompilationMode.default = Fastbuild


class Os(Option):
    option_name = "os"


class Linux(Os):
    value_name = "linux"


class MacOS(Os):
    value_name = "macos"


class Windows(Os):
    value_name = "windows"


class Wasi(Os):
    value_name = "wasi"


class UnknownOs(Os):
    value_name = "none"


class Arch(Option):
    option_name = "arch"


class X86_64(Arch):
    value_name = "x86_64"


class Aarch64(Arch):
    value_name = "aarch64"


class Wasm32(Arch):
    value_name = "wasm32"


def _detect_host_os() -> Type[Os]:
    py_system = platform.system()
    if py_system == "Linux":
        return Linux
    elif py_system == "Darwin":
        return MacOS
    elif py_system == "Windows":
        return Windows
    else:
        raise RuntimeError(f"unsupported OS {py_system!r}")


def _detect_host_arch() -> Type[Arch]:
    py_arch = platform.machine().lower()
    if py_arch in ("x86_64", "amd64"):
        return X86_64
    elif py_arch in ("arm64", "aarch64"):
        return Aarch64
    else:
        raise RuntimeError(f"unsupported arch {py_arch!r}")


# Settings understood by the rules, with the type each must have
KNOWN_SETTINGS: Dict[str, type] = {
    "extra_rustc_flags": list,
    "extra_exec_rustc_flags": list,
    "error_format": str,
    "clippy_flags": list,
    "clippy_error_format": str,
    "capture_clippy_output": bool,
    "protoc_opts": list,
}

_DEFAULT_SETTINGS: Dict[str, Any] = {
    "extra_rustc_flags": (),
    "extra_exec_rustc_flags": (),
    "error_format": "human",
    "clippy_flags": (),
    "clippy_error_format": "human",
    "capture_clippy_output": False,
    "protoc_opts": (),
}

_ERROR_FORMATS = ("human", "json", "short")


class BuildConfig:
    """
    The configuration a target is analyzed under. Immutable and hashable so analysis results can be keyed on it.
    """

    def __init__(
        self,
        *,
        options: Optional[Mapping[Type[Option], Type[Option]]] = None,
        host_options: Optional[Mapping[Type[Option], Type[Option]]] = None,
        features: Iterable[str] = (),
        disabled_features: Iterable[str] = (),
        settings: Optional[Mapping[str, Any]] = None,
        is_exec: bool = False,
    ):
        self.options = _validate_options(options or {})
        if host_options is None:
            host_options = {Os: _detect_host_os(), Arch: _detect_host_arch()}
        self.host_options = _validate_options(host_options)
        self.features: FrozenSet[str] = frozenset(features)
        self.disabled_features: FrozenSet[str] = frozenset(disabled_features)
        self.is_exec = is_exec

        merged_settings = dict(_DEFAULT_SETTINGS)
        for k, v in (settings or {}).items():
            expected_type = KNOWN_SETTINGS.get(k)
            if expected_type is None:
                raise ValueError(f"unknown build setting {k!r}")
            accepted = (list, tuple) if expected_type is list else expected_type
            if not isinstance(v, accepted):
                raise TypeError(f"build setting {k!r} must be a {expected_type.__name__}")
            if isinstance(v, list):
                v = tuple(v)
            merged_settings[k] = v
        for name in ("error_format", "clippy_error_format"):
            if merged_settings[name] not in _ERROR_FORMATS:
                raise ValueError(
                    f"invalid {name} {merged_settings[name]!r}, expected one of {', '.join(_ERROR_FORMATS)}"
                )
        self.settings: Dict[str, Any] = merged_settings

    def __getitem__(self, option: Type[Option]) -> Optional[Type[Option]]:
        if option in self.options:
            return self.options[option]
        if option is Os:
            return self.host_options.get(Os) or _detect_host_os()
        if option is Arch:
            return self.host_options.get(Arch) or _detect_host_arch()
        return option.default

    def get(self, option: Type[Option], default=None):
        value = self[option]
        return default if value is None else value

    def setting(self, name: str):
        return self.settings[name]

    @property
    def compilation_mode(self) -> Type[CompilationMode]:
        return self[CompilationMode]

    @property
    def bin_dir(self) -> str:
        suffix = "-exec" if self.is_exec else ""
        return f"out/{self[Arch].value_name}-{self.compilation_mode.value_name}{suffix}/bin"

    def exec_config(self) -> BuildConfig:
        """
        The configuration used for tools that run during the build (build scripts, proc macros, plugins)
        """
        if self.is_exec:
            return self
        return BuildConfig(
            options={**self.host_options, CompilationMode: Optimized},
            host_options=self.host_options,
            features=self.features,
            disabled_features=self.disabled_features,
            settings=self.settings,
            is_exec=True,
        )

    def with_features(self, *, enabled: Iterable[str] = (), disabled: Iterable[str] = ()) -> BuildConfig:
        enabled = set(enabled)
        disabled = set(disabled)
        return BuildConfig(
            options=self.options,
            host_options=self.host_options,
            features=(self.features - disabled) | enabled,
            disabled_features=(self.disabled_features - enabled) | disabled,
            settings=self.settings,
            is_exec=self.is_exec,
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> BuildConfig:
        unknown_tables = set(data) - {"options", "host_options", "features", "settings"}
        if unknown_tables:
            raise ValueError(f"unknown build config tables: {', '.join(sorted(unknown_tables))}")

        options = _parse_options(data.get("options", {}))
        host_options = _parse_options(data["host_options"]) if "host_options" in data else None
        features = data.get("features", {})
        return cls(
            options=options,
            host_options=host_options,
            features=features.get("enabled", []),
            disabled_features=features.get("disabled", []),
            settings=data.get("settings", {}),
        )

    @classmethod
    def from_toml(cls, path: Union[str, Path]) -> BuildConfig:
        with open(path, "r", encoding="utf-8") as f:
            try:
                data = toml.load(f)
            except toml.TomlDecodeError as ex:
                raise ValueError(f"failed to parse build config {str(path)!r}: {ex}") from ex
        return cls.from_dict(data)

    def _key(self) -> Tuple:
        return (
            tuple(sorted((k.__qualname__, v.__qualname__) for k, v in self.options.items())),
            tuple(sorted((k.__qualname__, v.__qualname__) for k, v in self.host_options.items())),
            self.features,
            self.disabled_features,
            tuple(sorted(self.settings.items())),
            self.is_exec,
        )

    def __eq__(self, obj):
        return isinstance(obj, BuildConfig) and self._key() == obj._key()

    def __hash__(self):
        return hash(self._key())

    def __repr__(self):
        options = ", ".join(f"{k.option_name}={v.value_name}" for k, v in self.options.items())
        return f"BuildConfig({options}{', exec' if self.is_exec else ''})"


def _parse_options(raw: Mapping[str, str]) -> Dict[Type[Option], Type[Option]]:
    options = {}
    for k, v in raw.items():
        option = Option.by_name(k)
        options[option] = option.parse(v)
    return options


def _validate_options(options: Mapping[Type[Option], Type[Option]]) -> Dict[Type[Option], Type[Option]]:
    validated = {}
    for k, v in options.items():
        if not (isinstance(v, type) and issubclass(v, k)):
            raise TypeError(f"value {v!r} is not valid for option {k!r}")
        validated[k] = v
    return validated


def target_triple(build_config: BuildConfig) -> str:
    """
    The LLVM target triple for the platform described by the configuration
    """
    os = build_config[Os]
    arch = build_config[Arch]
    if os == Linux:
        return f"{arch.value_name}-unknown-linux-gnu"
    elif os == MacOS:
        return f"{arch.value_name}-apple-darwin"
    elif os == Windows:
        return f"{arch.value_name}-pc-windows-msvc"
    elif os == Wasi:
        if arch != Wasm32:
            raise RuntimeError("WASI is only supported on wasm32")
        return "wasm32-wasi"
    elif arch == Wasm32:
        return "wasm32-unknown-unknown"
    else:
        return f"{arch.value_name}-unknown-none"


def feature_enabled(
    feature_name: str,
    *,
    features: Iterable[str],
    disabled_features: Iterable[str],
    default: bool = False,
) -> bool:
    """
    Check if a feature is enabled.

    If the feature is explicitly enabled or disabled, return accordingly. Otherwise return `default`.
    """
    if feature_name in disabled_features:
        return False

    if feature_name in features:
        return True

    return default


def split_target_features(target_features: Iterable[str]) -> Tuple[FrozenSet[str], FrozenSet[str]]:
    """
    Splits a target's `features` attribute into enabled and disabled (`-` prefixed) feature names
    """
    enabled = set()
    disabled = set()
    for feature in target_features:
        if feature.startswith("-"):
            disabled.add(feature[1:])
        else:
            enabled.add(feature)
    return frozenset(enabled), frozenset(disabled)
