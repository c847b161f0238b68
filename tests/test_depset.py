import pytest

from rules_rust.depset import Depset, depset


def test_default_order_is_postorder():
    a = Depset(["a"])
    b = Depset(["b"], transitive=[a])
    c = Depset(["c"], transitive=[b, Depset(["d"])])

    assert c.to_list() == ["a", "b", "d", "c"]


def test_preorder():
    a = Depset(["a"], order="preorder")
    b = Depset(["b"], transitive=[a], order="preorder")
    c = Depset(["c"], transitive=[b, Depset(["d"], order="preorder")], order="preorder")

    assert c.to_list() == ["c", "b", "a", "d"]


def test_topological_puts_dependents_first():
    lib = Depset(["lib"], order="topological")
    left = Depset(["left"], transitive=[lib], order="topological")
    right = Depset(["right"], transitive=[lib], order="topological")
    top = Depset(["top"], transitive=[left, right], order="topological")

    flattened = top.to_list()

    assert flattened[0] == "top"
    assert flattened[-1] == "lib"
    assert set(flattened) == {"top", "left", "right", "lib"}


def test_items_are_deduplicated():
    shared = Depset(["x", "y"])
    merged = Depset(["y", "z"], transitive=[shared, shared])

    assert merged.to_list() == ["x", "y", "z"]


def test_default_order_merges_with_anything():
    assert Depset(["a"], transitive=[Depset(["b"], order="preorder")]).to_list() == ["b", "a"]
    assert Depset(["a"], transitive=[Depset(["b"])], order="topological").to_list() == ["a", "b"]


def test_incompatible_orders():
    with pytest.raises(ValueError):
        Depset(transitive=[Depset(["a"], order="preorder")], order="postorder")


def test_invalid_order():
    with pytest.raises(ValueError):
        Depset(order="random")


def test_unhashable_items():
    with pytest.raises(TypeError):
        Depset([["a"]])


def test_nested_depset_as_direct_item():
    with pytest.raises(TypeError):
        Depset([Depset(["a"])])


def test_empty():
    assert Depset().is_empty()
    assert Depset(transitive=[Depset()]).is_empty()
    assert not depset(["a"]).is_empty()


def test_flattening_is_associative():
    a = Depset(["a", "shared"])
    b = Depset(["b", "shared"])
    c = Depset(["c"])

    for order in ("default", "preorder", "topological"):
        left = Depset(transitive=[Depset(transitive=[a, b], order=order), c], order=order)
        right = Depset(transitive=[a, Depset(transitive=[b, c], order=order)], order=order)
        assert left.to_list() == right.to_list(), order


def test_only_reachable_items():
    shared = Depset(["shared"])
    unrelated = Depset(["unrelated"], transitive=[shared])
    root = Depset(["root"], transitive=[shared])

    assert unrelated.to_list() == ["shared", "unrelated"]
    assert root.to_list() == ["shared", "root"]


def test_deeply_nested():
    for order in ("default", "preorder", "topological"):
        node = Depset([0], order=order)
        for i in range(1, 5000):
            node = Depset([i], transitive=[node], order=order)

        flattened = node.to_list()

        assert len(flattened) == 5000
        if order == "default":
            assert flattened[0] == 0
        else:
            assert flattened[0] == 4999
