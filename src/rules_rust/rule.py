from __future__ import annotations

import inspect
import logging
import shlex
from inspect import Traceback
from pathlib import PurePosixPath
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Sequence, Type, Union

from ._reflect import get_caller_location
from .action import Action, Run, WriteFile
from .artifact import File
from .attribute import Attribute
from .config import BuildConfig, feature_enabled, split_target_features
from .depset import Depset
from .exec import Executable
from .label import Label
from .provider import Provider

if TYPE_CHECKING:
    from .aspect import Aspect

logger = logging.getLogger(__name__)


class _AttributeCollectingMeta(type):
    attributes: Dict[str, Attribute]

    def __init__(cls, name, bases, dct):
        super().__init__(name, bases, dct)

        cls.attributes = {}
        for base in reversed(cls.__mro__[1:]):
            cls.attributes.update(getattr(base, "attributes", {}))
        for k, v in dct.items():
            if not isinstance(v, Attribute):
                continue
            v.name = k
            cls.attributes[k] = v


class RuleMeta(_AttributeCollectingMeta):
    def __call__(cls, **kwds) -> RuleInvocation:
        from .package import _add_rule_invocation_to_package, _get_package_optional

        name = kwds.pop("name", None)
        if not isinstance(name, str):
            raise TypeError('expected string value for "name"')
        if not name or ":" in name:
            raise ValueError(f"invalid target name {name!r}")

        tags = list(kwds.pop("tags", []))
        features = list(kwds.pop("features", []))
        for tag in tags + features:
            if not isinstance(tag, str):
                raise TypeError("tags and features must be strings")

        package = _get_package_optional()

        invocation_data = {}
        for k, v in kwds.items():
            try:
                attribute = cls.attributes[k]
            except KeyError:
                raise ValueError(f"unexpected attribute with name {k!r} for rule {cls.__name__}")
            invocation_data[k] = attribute.coerce_source(v, package=package)
        for k, attribute in cls.attributes.items():
            if k not in invocation_data:
                if not attribute.is_optional:
                    raise ValueError(f"expected a value for attribute {k!r} of rule {cls.__name__}")
                if attribute.has_default:
                    invocation_data[k] = attribute.coerce_source(attribute.default, package=package)

        # Get caller location
        instantiation_location = get_caller_location()

        invocation = RuleInvocation(
            cls,
            name=name,
            tags=tags,
            features=features,
            invocation_data=invocation_data,
            instantiation_location=instantiation_location,
        )

        _add_rule_invocation_to_package(invocation)

        return invocation


class Target:
    """
    A configured target as seen by the targets depending on it: its label plus the providers it (and any aspects
    applied to it) returned
    """

    def __init__(
        self,
        label: Label,
        providers: Sequence[Provider],
        *,
        build_config: BuildConfig,
        kind: Optional[str] = None,
        tags: Sequence[str] = (),
    ):
        self.label = label
        self.providers = list(providers)
        self.build_config = build_config
        self.kind = kind
        self.tags = list(tags)

    def __contains__(self, provider_type: Type[Provider]) -> bool:
        return any(isinstance(provider, provider_type) for provider in self.providers)

    def __getitem__(self, provider_type: Type[Provider]) -> Provider:
        matching_providers = [provider for provider in self.providers if isinstance(provider, provider_type)]
        if not matching_providers:
            raise RuntimeError(f"target {self.label} does not provide {provider_type.__qualname__}")
        elif len(matching_providers) > 1:
            raise RuntimeError(f"target {self.label} provides more than one {provider_type.__qualname__}")
        return matching_providers[0]

    def get(self, provider_type: Type[Provider]) -> Optional[Provider]:
        if provider_type in self:
            return self[provider_type]
        return None

    def with_providers(self, providers: Sequence[Provider]) -> Target:
        return Target(
            self.label,
            [*self.providers, *providers],
            build_config=self.build_config,
            kind=self.kind,
            tags=self.tags,
        )

    def __repr__(self):
        return f"<target {self.label}>"


class AnalysisContext:
    """
    Functionality shared by rules and aspects: attribute resolution, file declaration and action registration
    """

    label: Label
    build_config: BuildConfig
    actions: List[Action]
    declared_outputs: List[File]

    def _init_context(self, label: Label, attributes_input, build_config: BuildConfig, *, tags=(), features=()):
        self.label = label
        self.attributes_input = attributes_input
        self.build_config = build_config
        self.tags = list(tags)
        self.target_features, self.target_disabled_features = split_target_features(features)
        self.actions = []
        self.declared_outputs = []
        self.attributes_resolved = {}

    def analyze(self):
        raise NotImplementedError('rules must implement an "analyze" method')

    @property
    def bin_dir(self) -> str:
        return self.build_config.bin_dir

    # Feature flags
    def feature_enabled(self, feature_name: str, default: bool = False) -> bool:
        return feature_enabled(
            feature_name,
            features=self.build_config.features | self.target_features,
            disabled_features=(self.build_config.disabled_features - self.target_features)
            | self.target_disabled_features,
            default=default,
        )

    # Requests answered by the analysis host
    async def load_target(
        self, target: Union[Label, str], *, aspects: Sequence[Type[Aspect]] = (), exec: bool = False
    ) -> Target:
        if isinstance(target, str):
            target = Label(target)
        target = target.absolute(self.label.package)

        response = await AsyncRequestAwaiter(
            dict(type="load_target", label=target, aspects=tuple(aspects), exec=exec, build_config=self.build_config)
        )
        if response["type"] == "target":
            return response["target"]
        else:
            raise RuntimeError("internal error: invalid response to async request")

    async def load_providers(self, target: Union[Label, str], *, exec: bool = False) -> List[Provider]:
        return (await self.load_target(target, exec=exec)).providers

    async def resolve_provider(self, provider_type: Type[Provider], target: Union[Label, str], *, exec=False):
        loaded = await self.load_target(target, exec=exec)
        return loaded[provider_type]

    async def resolve_toolchain(self, provider_type: Type[Provider], *, mandatory: bool = True) -> Optional[Provider]:
        response = await AsyncRequestAwaiter(
            dict(type="resolve_toolchain", provider_type=provider_type, build_config=self.build_config)
        )

        if response["type"] == "none":
            if mandatory:
                raise RuntimeError(
                    f"no toolchain registered for {provider_type.__qualname__} (required by {self.label})"
                )
            return None
        elif response["type"] == "provider":
            return response["provider"]
        else:
            raise RuntimeError("internal error: invalid response to async request")

    async def gather(self, coroutines):
        if isinstance(coroutines, dict):
            results = await AsyncGroupAwaiter(list(coroutines.values()))
            output = {}
            for k, result in zip(coroutines.keys(), results):
                output[k] = result
            return output
        else:
            return await AsyncGroupAwaiter(list(coroutines))

    # Outputs
    def _output_short_path(self, filename: str, sibling: Optional[File]) -> str:
        if not filename or filename.startswith("/") or ".." in PurePosixPath(filename).parts:
            raise ValueError(f"invalid output filename {filename!r}")
        if sibling is not None:
            parent = str(PurePosixPath(sibling.short_path).parent)
            return filename if parent == "." else f"{parent}/{filename}"
        package_path = self.label.package_path
        if self.label.workspace_root:
            package_path = f"{self.label.workspace_root}/{package_path}".rstrip("/")
        return f"{package_path}/{filename}" if package_path else filename

    def declare_file(self, filename: str, *, sibling: Optional[File] = None) -> File:
        file = File(self._output_short_path(filename, sibling), owner=self.label, root=self.bin_dir)
        if file in self.declared_outputs:
            raise RuntimeError(f"output {file.path} was declared twice by {self.label}")
        self.declared_outputs.append(file)
        return file

    def declare_directory(self, dirname: str, *, sibling: Optional[File] = None) -> File:
        directory = File(
            self._output_short_path(dirname, sibling), owner=self.label, root=self.bin_dir, is_directory=True
        )
        if directory in self.declared_outputs:
            raise RuntimeError(f"output {directory.path} was declared twice by {self.label}")
        self.declared_outputs.append(directory)
        return directory

    # Action constructors
    def run(
        self,
        executable: Union[Executable, File, str],
        *args: str,
        inputs: Union[Depset, Iterable[File]] = (),
        outputs: Sequence[File],
        env: Optional[Dict[str, str]] = None,
        tools: Union[Depset, Iterable[File]] = (),
        mnemonic: Optional[str] = None,
        progress_message: Optional[str] = None,
    ) -> Run:
        if isinstance(executable, str):
            executable = Executable(executable_path=executable)
        elif isinstance(executable, File):
            executable = Executable.from_file(executable)
        if not isinstance(executable, Executable):
            raise TypeError(f"invalid executable {executable!r}")
        if not outputs:
            raise RuntimeError(f"action registered by {self.label} must have at least one output")
        if mnemonic is None:
            mnemonic = PurePosixPath(executable.executable_path).name
        if progress_message is None:
            progress_message = " ".join(map(shlex.quote, map(str, args)))
        for arg in args:
            if not isinstance(arg, str):
                raise TypeError(f"action arguments must be strings, got {arg!r}")

        action = Run(
            executable=executable,
            arguments=list(args),
            run_inputs=_as_depset(inputs),
            run_outputs=list(outputs),
            env=dict(env or {}),
            tools=_as_depset(tools),
            mnemonic=mnemonic,
            progress_message=progress_message,
        )
        self._add_action(action)
        return action

    def write(self, output: File, content: str, *, is_executable: bool = False) -> WriteFile:
        action = WriteFile(
            output=output,
            content=content,
            is_executable=is_executable,
            mnemonic="FileWrite",
            progress_message=f"Writing {output.short_path}",
        )
        self._add_action(action)
        return action

    def _add_action(self, action: Action):
        action.owner = self.label
        logger.debug("%s registered %s action producing %s", self.label, action.mnemonic, action.outputs)
        self.actions.append(action)

    # Analysis driver
    async def _run_analyze(self):
        attribute_tasks = {}
        for k, attribute in self.__class__.attributes.items():
            attribute_tasks[k] = self._resolve_attribute(k, attribute)
        self.attributes_resolved = await self.gather(attribute_tasks)

        result = self.analyze()

        # Allow `analyze` to be synchronous or asynchronous
        if inspect.iscoroutine(result):
            result = await result

        if result is not None:
            if not isinstance(result, list):
                raise RuntimeError("expected list of providers from analysis return value")
            seen_types = set()
            for item in result:
                if not isinstance(item, Provider):
                    raise RuntimeError("expected list of providers from analysis return value")
                if type(item) in seen_types:
                    raise RuntimeError(f"{self.label} returned more than one {type(item).__qualname__}")
                seen_types.add(type(item))
        else:
            result = []

        return result

    async def _resolve_attribute(self, k, attribute):
        if k in self.attributes_input:
            return await attribute.resolve_from_source(self.attributes_input[k], rule=self)
        else:
            # This should already have been checked when the rule was invoked
            assert attribute.is_optional
            return await attribute.resolve_from_source(Attribute.NotSet, rule=self)


def _as_depset(files) -> Depset:
    if isinstance(files, Depset):
        return files
    return Depset(files)


class Rule(AnalysisContext, metaclass=RuleMeta):
    name: str

    def __init__(self, name, label, attributes_input, build_config, *, tags=(), features=()):
        self.name = name
        self._init_context(label, attributes_input, build_config, tags=tags, features=features)


class AsyncRequestAwaiter:
    def __init__(self, request):
        self.request = request

    def __await__(self):
        response = yield [self.request]
        return response


class AsyncGroupAwaiter:
    def __init__(self, coroutines):
        self.coroutines = coroutines

    def __await__(self):
        active_coroutines = [*self.coroutines]
        outputs = [None] * len(self.coroutines)
        response_mappings = []

        # Get initial requests
        requests = []
        for i, coroutine in enumerate(active_coroutines):
            try:
                coroutine_requests = coroutine.send(None)
            except StopIteration as ex:
                outputs[i] = ex.value
                active_coroutines[i] = None
            else:
                requests += coroutine_requests
                response_mappings += [i] * len(coroutine_requests)

        # Continue to solicit requests and handle responses
        while any(coroutine is not None for coroutine in active_coroutines):
            response = yield requests
            requests = []
            response_dest_index = response_mappings.pop(0)
            try:
                coroutine_requests = active_coroutines[response_dest_index].send(response)
            except StopIteration as ex:
                outputs[response_dest_index] = ex.value
                active_coroutines[response_dest_index] = None
            else:
                requests += coroutine_requests
                response_mappings += [response_dest_index] * len(coroutine_requests)

        return outputs


class RuleInvocation:
    rule: RuleMeta
    name: str
    invocation_data: Dict[Any, Any]
    instantiation_location: Optional[Traceback]

    def __init__(
        self,
        rule: RuleMeta,
        *,
        name: str,
        tags: Sequence[str] = (),
        features: Sequence[str] = (),
        invocation_data: Dict[Any, Any],
        instantiation_location: Optional[Traceback] = None,
    ):
        self.rule = rule
        self.name = name
        self.tags = list(tags)
        self.features = list(features)
        self.invocation_data = invocation_data
        self.instantiation_location = instantiation_location

    def to_json(self):
        return {
            "name": self.name,
            "rule": self.rule.__qualname__,
            "tags": self.tags,
            "features": self.features,
            "attributes_input": self.invocation_data,
        }

    def __repr__(self):
        return f"<{self.rule.__name__} {self.name!r}>"
