import json
from pathlib import Path

import numpy as np
import pytest

from modelport.ir.onnx_importer import load_onnx
from modelport.ir.tensor import TensorBuffer
from modelport.runtime.executor import predict
from modelport.utils import reporting
from modelport.utils.reporting import format_summary, generate_report, generate_report_json


@pytest.fixture
def traced_cnn(cnn_model):
    graph, params = load_onnx(cnn_model)
    trace = []
    predict(graph, params, TensorBuffer.wrap(np.zeros((2, 3, 8, 8), dtype=np.float32)), trace=trace)
    return graph, params, trace


def test_generate_report_json(traced_cnn):
    graph, params, trace = traced_cnn
    report = generate_report_json(graph, params, trace)

    assert report["graph"] == "tiny-cnn"
    assert report["opset"] == 13
    assert report["inputs"] == {"image": "?x3x8x8"}
    assert report["node_count"] == 8
    assert report["op_histogram"]["Conv"] == 1
    # conv 4*3*3*3 + 4, bn 4*4, fc 3*4 + 3
    assert report["parameter_count"] == 112 + 16 + 15
    assert report["parameter_bytes"] == report["parameter_count"] * 4

    timeline = report["timeline"]
    assert [t["name"] for t in timeline] == [n.name for n in graph.nodes]
    assert timeline[-1]["shapes"] == "2x3"
    assert report["total_us"] == max(t["end"] for t in timeline)
    assert set(report["node_latency_stats"]) == {"min", "max", "p50", "p95", "p99", "avg"}


def test_generate_report_json_without_trace(linear_model):
    graph, params = load_onnx(linear_model)
    report = generate_report_json(graph, params)
    assert report["timeline"] == []
    assert report["total_us"] == 0.0
    assert "node_latency_stats" not in report


def test_percentiles():
    assert reporting._calculate_percentiles([]) == {}
    stats = reporting._calculate_percentiles([3.0, 1.0, 2.0])
    assert stats["min"] == 1.0
    assert stats["max"] == 3.0
    assert stats["p50"] == 2.0
    assert stats["avg"] == 2.0


def test_generate_report_full(traced_cnn, tmp_path: Path, capsys):
    """Tests the main generate_report function that writes all artifacts."""
    graph, params, trace = traced_cnn
    generate_report(graph, params, trace, str(tmp_path))

    data = json.loads((tmp_path / "report.json").read_text())
    assert data["graph"] == "tiny-cnn"

    content = (tmp_path / "report.html").read_text(encoding='utf-8')
    assert "conv1" in content
    assert "Softmax" in content

    out = capsys.readouterr().out
    assert "Inference Timeline (ASCII)" in out
    assert "Node Latency Stats" in out


def test_format_summary(linear_model):
    graph, params = load_onnx(linear_model)
    summary = format_summary(graph, params)
    assert "Graph 'linear' (opset 13)" in summary
    assert "X: ?x2 float32" in summary
    assert "Parameters: 2 (6 values)" in summary
    assert "Nodes: 2" in summary
    assert "MatMul: 1" in summary
