from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple, Type, Union

from ._json import encode_json
from .action import Action
from .artifact import File, source_file
from .aspect import Aspect, RuleAttributes
from .config import BuildConfig, target_triple
from .depset import Depset
from .label import Label
from .provider import DefaultInfo, OutputGroupInfo, Provider
from .rule import AnalysisContext, Rule, Target
from .workspace import Workspace

logger = logging.getLogger(__name__)


class AnalysisError(RuntimeError):
    pass


class _ConfiguredTarget:
    def __init__(self, target: Target, rule: Optional[Rule]):
        self.target = target
        self.rule = rule


class AnalysisResult:
    """
    The outcome of analyzing one target: its providers and every action registered while analyzing the graph
    """

    def __init__(self, target: Target, actions: Sequence[Action]):
        self.target = target
        self.actions = list(actions)

    @property
    def label(self) -> Label:
        return self.target.label

    @property
    def providers(self) -> List[Provider]:
        return self.target.providers

    def __getitem__(self, provider_type: Type[Provider]) -> Provider:
        return self.target[provider_type]

    def __contains__(self, provider_type: Type[Provider]) -> bool:
        return provider_type in self.target

    @property
    def files(self) -> List[File]:
        if DefaultInfo not in self.target:
            return []
        return self.target[DefaultInfo].files.to_list()

    def output_group(self, name: str) -> List[File]:
        groups = [p for p in self.target.providers if isinstance(p, OutputGroupInfo)]
        files = Depset(transitive=[group[name] for group in groups if name in group])
        return files.to_list()

    def actions_with_mnemonic(self, mnemonic: str) -> List[Action]:
        return [action for action in self.actions if action.mnemonic == mnemonic]

    def action_producing(self, file: Union[File, str]) -> Optional[Action]:
        path = file.path if isinstance(file, File) else file
        for action in self.actions:
            if any(output.path == path for output in action.outputs):
                return action
        return None

    def to_json(self):
        return {
            "target": self.target.label,
            "providers": self.target.providers,
            "actions": self.actions,
        }

    def dumps(self, *, pretty: bool = True) -> str:
        return encode_json(self.to_json(), pretty=pretty)


class AnalysisHost:
    """
    Analyzes targets of a workspace in-process.

    Rules and aspects request information (other targets, toolchains) by yielding requests from their `analyze`
    coroutines; the host suspends the requesting rule until what was asked for is analyzed. Results are memoized per
    (label, configuration), so every target is analyzed at most once per configuration. The host only records the
    actions rules register; it never executes them.
    """

    def __init__(self, workspace: Workspace, build_config: Optional[BuildConfig] = None):
        self.workspace = workspace
        self.build_config = build_config if build_config is not None else BuildConfig()

        self._configured: Dict[Tuple[Label, BuildConfig], _ConfiguredTarget] = {}
        self._aspect_providers: Dict[Tuple[Type[Aspect], Label, BuildConfig], List[Provider]] = {}
        self._in_progress: List[Tuple[Any, ...]] = []
        self._in_progress_keys = set()

        self.actions: List[Action] = []
        self._output_owners: Dict[File, Action] = {}

    def analyze(self, label: Union[str, Label], *, aspects: Sequence[Type[Aspect]] = ()) -> AnalysisResult:
        if isinstance(label, str):
            label = Label(label)
        if label.is_package_relative:
            raise AnalysisError(f"label {label} must be absolute")
        target = _evaluate(self._load_target(label, self.build_config, tuple(aspects)))
        return AnalysisResult(target, self.actions)

    def _normalize(self, label: Label) -> Label:
        name = self.workspace.name
        if name and label.workspace_name == name:
            label = Label(str(label)[len(name) + 1 :])
        return label.canonical()

    # The steps below are generators run by `_evaluate`, a step yields another step to wait for its result

    def _load_target(self, label: Label, build_config: BuildConfig, aspects: Tuple[Type[Aspect], ...]):
        label = self._normalize(label)
        configured = yield self._configure(label, build_config)
        target = configured.target
        for aspect in aspects:
            providers = yield self._apply_aspect(aspect, label, build_config)
            target = target.with_providers(providers)
        return target

    def _enter(self, key):
        if key in self._in_progress_keys:
            cycle = self._in_progress[self._in_progress.index(key) :] + [key]
            raise AnalysisError("dependency cycle detected: " + " -> ".join(_describe_key(k) for k in cycle))
        self._in_progress.append(key)
        self._in_progress_keys.add(key)

    def _exit(self, key):
        popped = self._in_progress.pop()
        assert popped == key
        self._in_progress_keys.remove(key)

    def _configure(self, label: Label, build_config: BuildConfig):
        key = (label, build_config)
        configured = self._configured.get(key)
        if configured is not None:
            return configured

        invocation = self.workspace.lookup(label)
        if invocation is None:
            configured = self._configure_source_file(label, build_config)
            self._configured[key] = configured
            return configured

        self._enter(key)
        try:
            logger.debug("analyzing %s (%s) in %r", label, invocation.rule.__name__, build_config)
            rule_class = invocation.rule
            # Rule classes override __call__ to record invocations, so instances are constructed manually
            rule = rule_class.__new__(rule_class)
            rule.__init__(
                invocation.name,
                label,
                invocation.invocation_data,
                build_config,
                tags=invocation.tags,
                features=invocation.features,
            )
            providers = yield self._run(rule)
        finally:
            self._exit(key)

        target = Target(
            label,
            providers,
            build_config=build_config,
            kind=invocation.rule.__name__,
            tags=invocation.tags,
        )
        configured = _ConfiguredTarget(target, rule)
        self._configured[key] = configured
        return configured

    def _configure_source_file(self, label: Label, build_config: BuildConfig) -> _ConfiguredTarget:
        if not self.workspace.has_package(label):
            raise AnalysisError(f"no such package '{label.package}' (needed for {label})")
        if not self.workspace.source_file_exists(label):
            raise AnalysisError(f"no such target '{label}': not a rule or an existing source file")
        file = source_file(label)
        target = Target(
            label,
            [DefaultInfo(files=Depset([file]))],
            build_config=build_config,
            kind="source file",
        )
        return _ConfiguredTarget(target, None)

    def _apply_aspect(self, aspect: Type[Aspect], label: Label, build_config: BuildConfig):
        key = (aspect, label, build_config)
        cached = self._aspect_providers.get(key)
        if cached is not None:
            return cached

        configured = yield self._configure(label, build_config)
        if configured.rule is None or not aspect.applies_to(configured.target):
            self._aspect_providers[key] = []
            return []

        self._enter(key)
        try:
            rule_values = {}
            for name, value in configured.rule.attributes_resolved.items():
                if name in aspect.attr_aspects:
                    value = yield self._propagate(aspect, value)
                rule_values[name] = value

            logger.debug("applying %s to %s", aspect.__name__, label)
            instance = aspect._instantiate(
                configured.target,
                RuleAttributes(rule_values),
                build_config,
                features=_target_features(configured.rule),
            )
            providers = yield self._run(instance)
        finally:
            self._exit(key)

        self._aspect_providers[key] = providers
        return providers

    def _propagate(self, aspect: Type[Aspect], value):
        if isinstance(value, Target):
            return (yield self._load_target(value.label, value.build_config, (aspect,)))
        elif isinstance(value, list):
            items = []
            for item in value:
                items.append((yield self._propagate(aspect, item)))
            return items
        else:
            return value

    def _run(self, context: AnalysisContext):
        try:
            providers = yield self._drive(context._run_analyze())
        except AnalysisError:
            raise
        except Exception as ex:
            raise AnalysisError(f"in {_describe_context(context)}: {ex}") from ex
        self._register_actions(context)
        return providers

    def _drive(self, task):
        pending = []
        response = None
        while True:
            try:
                requests = task.send(response)
            except StopIteration as ex:
                return ex.value
            pending += requests
            if not pending:
                raise AnalysisError("internal error: analysis is waiting without any outstanding request")
            response = yield self._handle_request(pending.pop(0))

    def _handle_request(self, request):
        if request["type"] == "load_target":
            build_config = request["build_config"]
            if request["exec"]:
                build_config = build_config.exec_config()
            target = yield self._load_target(request["label"], build_config, request["aspects"])
            return dict(type="target", target=target)
        elif request["type"] == "resolve_toolchain":
            return (yield self._resolve_toolchain(request["provider_type"], request["build_config"]))
        else:
            raise AnalysisError(f"internal error: unknown request type {request['type']!r}")

    def _resolve_toolchain(self, provider_type: Type[Provider], build_config: BuildConfig):
        triple = target_triple(build_config)
        registration = self.workspace.find_toolchain(provider_type, triple)
        if registration is None:
            return dict(type="none")
        toolchain_target = yield self._load_target(registration.target, build_config, ())
        if provider_type not in toolchain_target:
            raise AnalysisError(
                f"toolchain target {registration.target} registered for {provider_type.__qualname__} does not "
                f"provide it"
            )
        return dict(type="provider", provider=toolchain_target[provider_type])

    def _register_actions(self, context: AnalysisContext):
        generated = set()
        for action in context.actions:
            for output in action.outputs:
                if output not in context.declared_outputs:
                    raise AnalysisError(
                        f"{_describe_context(context)} registered a {action.mnemonic} action with output "
                        f"{output.path} that it did not declare"
                    )
                existing = self._output_owners.get(output)
                if existing is not None and existing.id != action.id:
                    raise AnalysisError(
                        f"conflicting actions for {output.path}: generated by both {existing.owner} "
                        f"({existing.mnemonic}) and {action.owner} ({action.mnemonic})"
                    )
                if output in generated:
                    raise AnalysisError(
                        f"{_describe_context(context)} registered more than one action generating {output.path}"
                    )
                generated.add(output)
        for output in context.declared_outputs:
            if output not in generated:
                raise AnalysisError(
                    f"output {output.path} declared by {_describe_context(context)} is not generated by any action"
                )
        for action in context.actions:
            for output in action.outputs:
                self._output_owners[output] = action
            self.actions.append(action)


def _target_features(rule: Rule) -> List[str]:
    return [*rule.target_features, *("-" + f for f in rule.target_disabled_features)]


def _describe_context(context: AnalysisContext) -> str:
    if isinstance(context, Aspect):
        return f"{type(context).__name__} on {context.label}"
    return str(context.label)


def _describe_key(key) -> str:
    if len(key) == 3:
        return f"{key[0].__name__}({key[1]})"
    return str(key[0])


def _evaluate(step):
    """
    Runs a host step to completion, keeping the steps it waits on in an explicit stack
    """
    stack = [step]
    value = None
    error: Optional[BaseException] = None
    while True:
        current = stack[-1]
        try:
            if error is not None:
                awaited = current.throw(error)
            else:
                awaited = current.send(value)
        except StopIteration as ex:
            stack.pop()
            value, error = ex.value, None
            if not stack:
                return value
            continue
        except Exception as ex:
            stack.pop()
            if not stack:
                raise
            value, error = None, ex
            continue
        stack.append(awaited)
        value, error = None, None
