import pytest

from rules_rust._json import decode_json, encode_json
from rules_rust.label import Label


def test_label_to_str():
    label = Label("@my_workspace//my_package:my_file")

    assert str(label) == "@my_workspace//my_package:my_file"


def test_label_parts():
    label = Label("@my_workspace//my/package:src/lib.rs")

    assert label.workspace_name == "my_workspace"
    assert label.is_external
    assert label.workspace_root == "external/my_workspace"
    assert label.package_path == "my/package"
    assert label.name == "src/lib.rs"
    assert label.package == Label("@my_workspace//my/package")


def test_label_main_workspace():
    label = Label("//hello_lib:greeting")

    assert not label.is_external
    assert label.workspace_root == ""
    assert label.name == "greeting"


def test_label_absolute():
    package = Label("//hello_lib")

    assert Label(":greeting").absolute(package) == Label("//hello_lib:greeting")
    assert Label("src/lib.rs").absolute(package) == Label("//hello_lib:src/lib.rs")
    assert Label("//other:x").absolute(package) == Label("//other:x")


def test_package_relative_label_has_no_package():
    with pytest.raises(ValueError):
        Label(":greeting").package


def test_label_json_encode():
    label = Label("@my_workspace//my_package:my_file")

    assert encode_json(label) == '{"$rules_rust_label":"@my_workspace//my_package:my_file"}'


def test_label_json_decode():
    label = Label("@my_workspace//my_package:my_file")

    assert decode_json('{"$rules_rust_label":"@my_workspace//my_package:my_file"}') == label
