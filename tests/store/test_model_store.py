import struct

import numpy as np
import pytest

from modelport.errors import CorruptArtifact, IOFailure, MalformedArtifact
from modelport.ir.model_ir import Graph, Node, ValueInfo
from modelport.ir.onnx_importer import load_onnx
from modelport.ir.opcode import OpKind
from modelport.ir.tensor import ElementType, TensorBuffer
from modelport.store import model_store


@pytest.fixture
def cnn_artifact(cnn_model):
    graph, params = load_onnx(cnn_model)
    return graph, params, model_store.encode(graph, params)


def test_round_trip_is_structural_and_bitwise(tmp_path, cnn_model):
    graph, params = load_onnx(cnn_model)
    path = tmp_path / "cnn.mpk"
    model_store.save(graph, params, path)
    loaded_graph, loaded_params = model_store.load(path)

    assert loaded_graph == graph
    assert list(loaded_params) == list(params)
    for name, buf in params.items():
        assert loaded_params[name] == buf
        assert loaded_params[name].to_bytes() == buf.to_bytes()


def test_round_trip_keeps_axes_and_dtypes():
    params = {
        "table": TensorBuffer.wrap(np.arange(6, dtype=np.int64).reshape(2, 3), axes=("row", "col")),
        "half": TensorBuffer.wrap(np.array([0.5, -1.25], dtype=np.float16)),
    }
    graph = Graph(
        nodes=[Node("add", OpKind.ADD, ["X", "half"], ["Y"])],
        inputs=[ValueInfo("X", (None, 2), ElementType.FLOAT16)],
        outputs=[ValueInfo("Y", (None, 2), ElementType.FLOAT16)],
        initializers=["table", "half"],
    )
    loaded_graph, loaded = model_store.decode(model_store.encode(graph, params))
    assert loaded == params
    assert loaded["table"].axes == ("row", "col")
    assert loaded_graph.inputs[0].shape == (None, 2)


def test_bad_magic(cnn_artifact):
    _, _, data = cnn_artifact
    with pytest.raises(CorruptArtifact, match="magic"):
        model_store.decode(b"XXXX" + data[4:])


def test_unsupported_version(cnn_artifact):
    _, _, data = cnn_artifact
    magic, _, flags, header_len = model_store.HEADER_STRUCT.unpack_from(data, 0)
    bumped = model_store.HEADER_STRUCT.pack(magic, 99, flags, header_len) + data[model_store.HEADER_STRUCT.size:]
    with pytest.raises(CorruptArtifact, match="version"):
        model_store.decode(bumped)


@pytest.mark.parametrize("cut", [0, 3, 40])
def test_truncated_header(cnn_artifact, cut):
    _, _, data = cnn_artifact
    with pytest.raises(CorruptArtifact):
        model_store.decode(data[:cut])


def test_truncated_payload(cnn_artifact):
    _, _, data = cnn_artifact
    with pytest.raises(CorruptArtifact):
        model_store.decode(data[:-5])


def test_checksum_mismatch(cnn_artifact):
    _, _, data = cnn_artifact
    corrupted = data[:-1] + bytes([data[-1] ^ 0xFF])
    with pytest.raises(CorruptArtifact, match="Checksum"):
        model_store.decode(corrupted)


def test_trailing_bytes(cnn_artifact):
    _, _, data = cnn_artifact
    with pytest.raises(CorruptArtifact, match="trailing"):
        model_store.decode(data + b"\x00")


def test_header_is_not_json(cnn_artifact):
    _, _, data = cnn_artifact
    header = b"{not json"
    blob = model_store.HEADER_STRUCT.pack(model_store.MAGIC, model_store.FORMAT_VERSION, 0, len(header)) + header
    with pytest.raises(CorruptArtifact):
        model_store.decode(blob)


def test_header_length_overflow():
    blob = struct.pack("<4sHHQ", model_store.MAGIC, 1, 0, 10_000) + b"{}"
    with pytest.raises(CorruptArtifact):
        model_store.decode(blob)


def test_load_missing_file(tmp_path):
    with pytest.raises(IOFailure):
        model_store.load(tmp_path / "nope.mpk")


def test_save_into_missing_directory(tmp_path, linear_model):
    graph, params = load_onnx(linear_model)
    with pytest.raises(IOFailure):
        model_store.save(graph, params, tmp_path / "missing" / "linear.mpk")


def test_artifact_does_not_need_onnx_parser(tmp_path, linear_model, monkeypatch):
    graph, params = load_onnx(linear_model)
    path = tmp_path / "linear.mpk"
    model_store.save(graph, params, path)

    import onnx
    monkeypatch.setattr(onnx, "load", lambda *a, **k: pytest.fail("onnx parser used"))
    monkeypatch.setattr(onnx, "load_model_from_string", lambda *a, **k: pytest.fail("onnx parser used"))
    loaded_graph, _ = model_store.load(path)
    assert loaded_graph == graph


def test_parameters_outside_the_graph_are_rejected(tmp_path, linear_model):
    graph, params = load_onnx(linear_model)
    extra = dict(params, extra=TensorBuffer.wrap(np.zeros(3, dtype=np.float32)))
    with pytest.raises(MalformedArtifact, match="extra"):
        model_store.save(graph, extra, tmp_path / "linear.mpk")
    assert not (tmp_path / "linear.mpk").exists()


def test_missing_parameter_is_rejected(linear_model):
    graph, params = load_onnx(linear_model)
    with pytest.raises(MalformedArtifact, match="'B'"):
        model_store.encode(graph, {"W": params["W"]})
