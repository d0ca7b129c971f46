import pytest

from modelport.errors import CyclicGraph, MalformedArtifact, UnresolvedReference, UnsupportedOperator
from modelport.ir.model_ir import Graph, Node, ValueInfo
from modelport.ir.opcode import OpKind


def _graph(nodes, inputs=("X",), outputs=("Y",), initializers=()):
    return Graph(
        nodes=nodes,
        inputs=[ValueInfo(n, (None, 2)) for n in inputs],
        outputs=[ValueInfo(n, (None, 2)) for n in outputs],
        initializers=list(initializers),
    )


def test_topological_order_follows_dependencies_not_listing():
    g = _graph([
        Node("second", OpKind.RELU, ["H"], ["Y"]),
        Node("first", OpKind.ADD, ["X", "B"], ["H"]),
    ], initializers=["B"])
    assert [n.name for n in g.topological_order()] == ["first", "second"]


def test_topological_order_keeps_listing_order_for_independent_nodes():
    g = _graph([
        Node("b", OpKind.RELU, ["X"], ["P"]),
        Node("a", OpKind.SIGMOID, ["X"], ["Q"]),
        Node("join", OpKind.ADD, ["P", "Q"], ["Y"]),
    ])
    assert [n.name for n in g.topological_order()] == ["b", "a", "join"]


def test_validate_rejects_cycles():
    g = _graph([
        Node("a", OpKind.ADD, ["X", "Q"], ["P"]),
        Node("b", OpKind.RELU, ["P"], ["Q"]),
        Node("c", OpKind.RELU, ["P"], ["Y"]),
    ])
    with pytest.raises(CyclicGraph) as exc:
        g.validate()
    assert set(exc.value.nodes) >= {"a", "b"}


def test_validate_rejects_unresolved_output():
    g = _graph([Node("a", OpKind.RELU, ["X"], ["P"])])
    with pytest.raises(UnresolvedReference):
        g.validate()


def test_validate_rejects_double_producers():
    g = _graph([
        Node("a", OpKind.RELU, ["X"], ["Y"]),
        Node("b", OpKind.SIGMOID, ["X"], ["Y"]),
    ])
    with pytest.raises(MalformedArtifact):
        g.validate()


def test_empty_input_names_are_optional_inputs():
    g = _graph([Node("clip", OpKind.CLIP, ["X", "", "hi"], ["Y"])], initializers=["hi"])
    g.validate()


def test_dict_round_trip():
    g = _graph([
        Node("conv", OpKind.CONV, ["X", "W"], ["Y"], {"pads": [1, 1, 1, 1], "auto_pad": "NOTSET"}),
    ], initializers=["W"])
    g.opset = 11
    assert Graph.from_dict(g.to_dict()) == g


def test_from_dict_rejects_unknown_operator():
    d = _graph([Node("a", OpKind.RELU, ["X"], ["Y"])]).to_dict()
    d["nodes"][0]["op_type"] = "Erf"
    with pytest.raises(UnsupportedOperator):
        Graph.from_dict(d)


def test_op_histogram():
    g = _graph([
        Node("a", OpKind.RELU, ["X"], ["P"]),
        Node("b", OpKind.RELU, ["P"], ["Q"]),
        Node("c", OpKind.ADD, ["P", "Q"], ["Y"]),
    ])
    assert g.op_histogram() == {"Relu": 2, "Add": 1}


def test_unknown_rank_survives_dict_round_trip():
    g = _graph([Node("relu", OpKind.RELU, ["X"], ["Y"])])
    g.inputs = [ValueInfo("X", None), ValueInfo("S", ())]
    restored = Graph.from_dict(g.to_dict())
    assert restored.inputs[0].shape is None
    assert restored.inputs[1].shape == ()
