import json

import pytest

from rules_rust.analysis import AnalysisError, AnalysisHost
from rules_rust.artifact import File
from rules_rust.attribute import StringAttribute, TargetListAttribute, ToolchainAttribute
from rules_rust.depset import Depset
from rules_rust.provider import DefaultInfo, Field, OutputGroupInfo, Provider
from rules_rust.rule import Rule
from rules_rust.rust.providers import RustToolchain
from rules_rust.workspace import Workspace


class MessageInfo(Provider):
    messages = Field(Depset)


class Message(Rule):
    text = StringAttribute()
    deps = TargetListAttribute(default=[])

    analyze_count = 0

    def analyze(self):
        Message.analyze_count += 1
        out = self.declare_file(f"{self.name}.txt")
        self.write(out, self.text)
        return [
            MessageInfo(messages=Depset([self.text], transitive=[dep[MessageInfo].messages for dep in self.deps])),
            DefaultInfo(files=Depset([out])),
            OutputGroupInfo(groups={"texts": Depset([out])}),
        ]


class NeedsMessages(Rule):
    deps = TargetListAttribute(providers=[MessageInfo])

    def analyze(self):
        return []


class SameOutput(Rule):
    def analyze(self):
        out = self.declare_file("out.txt")
        self.write(out, str(self.label))
        return [DefaultInfo(files=Depset([out]))]


class Group(Rule):
    deps = TargetListAttribute()

    def analyze(self):
        return [DefaultInfo(files=Depset(transitive=[dep[DefaultInfo].files for dep in self.deps]))]


class UndeclaredOutput(Rule):
    def analyze(self):
        self.run("tool", outputs=[File("somewhere/else.txt", owner=self.label, root=self.bin_dir)])
        return []


class UngeneratedOutput(Rule):
    def analyze(self):
        self.declare_file("never.txt")
        return []


class NeedsToolchain(Rule):
    rust_toolchain = ToolchainAttribute(RustToolchain)

    def analyze(self):
        return []


def test_transitive_providers(build_config):
    workspace = Workspace()
    with workspace.package("//msg"):
        Message(name="a", text="hello")
        Message(name="b", text="world", deps=[":a"])

    result = AnalysisHost(workspace, build_config).analyze("//msg:b")

    assert result[MessageInfo].messages.to_list() == ["hello", "world"]
    assert [file.path for file in result.files] == ["out/x86_64-fastbuild/bin/msg/b.txt"]
    assert [file.path for file in result.output_group("texts")] == ["out/x86_64-fastbuild/bin/msg/b.txt"]
    assert [action.mnemonic for action in result.actions] == ["FileWrite", "FileWrite"]
    assert result.action_producing("out/x86_64-fastbuild/bin/msg/a.txt").content == "hello"


def test_targets_are_analyzed_once(build_config):
    workspace = Workspace()
    with workspace.package("//msg"):
        Message(name="base", text="base")
        Message(name="left", text="left", deps=[":base"])
        Message(name="right", text="right", deps=[":base"])
        Message(name="top", text="top", deps=[":left", ":right"])

    Message.analyze_count = 0
    result = AnalysisHost(workspace, build_config).analyze("//msg:top")

    assert Message.analyze_count == 4
    assert result[MessageInfo].messages.to_list() == ["base", "left", "right", "top"]


def test_dependency_cycle(build_config):
    workspace = Workspace()
    with workspace.package("//cycle"):
        Message(name="a", text="a", deps=[":b"])
        Message(name="b", text="b", deps=[":a"])

    with pytest.raises(AnalysisError) as excinfo:
        AnalysisHost(workspace, build_config).analyze("//cycle:a")

    assert "dependency cycle detected" in str(excinfo.value)
    assert "//cycle:a" in str(excinfo.value)
    assert "//cycle:b" in str(excinfo.value)


def test_missing_provider(build_config):
    workspace = Workspace()
    with workspace.package("//pkg"):
        Group(name="group", deps=[])
        NeedsMessages(name="needs", deps=[":group"])

    with pytest.raises(AnalysisError) as excinfo:
        AnalysisHost(workspace, build_config).analyze("//pkg:needs")

    assert "does not provide the required providers" in str(excinfo.value)
    assert "MessageInfo" in str(excinfo.value)


def test_unknown_package(build_config):
    workspace = Workspace()
    with workspace.package("//pkg"):
        Group(name="group", deps=["//nowhere:thing"])

    with pytest.raises(AnalysisError) as excinfo:
        AnalysisHost(workspace, build_config).analyze("//pkg:group")

    assert "no such package" in str(excinfo.value)


def test_missing_source_file(tmp_path, build_config):
    (tmp_path / "pkg").mkdir()
    (tmp_path / "pkg" / "exists.txt").write_text("")
    workspace = Workspace(root=tmp_path)
    with workspace.package("//pkg"):
        Group(name="good", deps=[":exists.txt"])
        Group(name="bad", deps=[":missing.txt"])

    host = AnalysisHost(workspace, build_config)
    assert [file.path for file in host.analyze("//pkg:good").files] == ["pkg/exists.txt"]
    with pytest.raises(AnalysisError) as excinfo:
        host.analyze("//pkg:bad")

    assert "no such target '//pkg:missing.txt'" in str(excinfo.value)


def test_conflicting_actions(build_config):
    workspace = Workspace()
    with workspace.package("//pkg"):
        SameOutput(name="one")
        SameOutput(name="two")
        Group(name="both", deps=[":one", ":two"])

    with pytest.raises(AnalysisError) as excinfo:
        AnalysisHost(workspace, build_config).analyze("//pkg:both")

    assert "conflicting actions for out/x86_64-fastbuild/bin/pkg/out.txt" in str(excinfo.value)


def test_undeclared_output(build_config):
    workspace = Workspace()
    with workspace.package("//pkg"):
        UndeclaredOutput(name="bad")

    with pytest.raises(AnalysisError) as excinfo:
        AnalysisHost(workspace, build_config).analyze("//pkg:bad")

    assert "that it did not declare" in str(excinfo.value)


def test_ungenerated_output(build_config):
    workspace = Workspace()
    with workspace.package("//pkg"):
        UngeneratedOutput(name="bad")

    with pytest.raises(AnalysisError) as excinfo:
        AnalysisHost(workspace, build_config).analyze("//pkg:bad")

    assert "is not generated by any action" in str(excinfo.value)


def test_missing_toolchain(build_config):
    workspace = Workspace()
    with workspace.package("//pkg"):
        NeedsToolchain(name="needs")

    with pytest.raises(AnalysisError) as excinfo:
        AnalysisHost(workspace, build_config).analyze("//pkg:needs")

    assert "no toolchain registered for RustToolchain" in str(excinfo.value)


def test_relative_label_rejected(build_config):
    with pytest.raises(AnalysisError):
        AnalysisHost(Workspace(), build_config).analyze(":relative")


def test_json_export(build_config):
    workspace = Workspace()
    with workspace.package("//msg"):
        Message(name="a", text="hello")

    result = AnalysisHost(workspace, build_config).analyze("//msg:a")
    exported = json.loads(result.dumps())

    assert exported["target"] == {"$rules_rust_label": "//msg:a"}
    (action,) = exported["actions"]
    assert action["mnemonic"] == "FileWrite"
    assert action["content"] == "hello"
    assert action["output"] == {"$rules_rust_file": "out/x86_64-fastbuild/bin/msg/a.txt"}
    assert len(action["id"]) == 64


def test_deep_dependency_chain(build_config):
    depth = 2000
    workspace = Workspace()
    with workspace.package("//chain"):
        for i in range(depth):
            deps = [f":m{i + 1}"] if i + 1 < depth else []
            Message(name=f"m{i}", text=str(i), deps=deps)

    result = AnalysisHost(workspace, build_config).analyze("//chain:m0")

    assert result[MessageInfo].messages.to_list() == [str(i) for i in reversed(range(depth))]
    assert len(result.actions) == depth


def test_package_shorthand_is_the_same_target(build_config):
    workspace = Workspace()
    with workspace.package("//a"):
        Message(name="a", text="a")
    with workspace.package("//pkg"):
        Group(name="both", deps=["//a", "//a:a"])

    Message.analyze_count = 0
    host = AnalysisHost(workspace, build_config)
    result = host.analyze("//pkg:both")
    host.analyze("//a")
    host.analyze("//a:a")

    assert Message.analyze_count == 1
    assert [file.path for file in result.files] == ["out/x86_64-fastbuild/bin/a/a.txt"]
    assert len(result.actions_with_mnemonic("FileWrite")) == 1
