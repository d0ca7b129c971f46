from __future__ import annotations
import json
from pathlib import Path
from typing import List, Dict, Any, Optional
from ..ir.model_ir import Graph
from ..ir.tensor import TensorBuffer
from . import viz

def _calculate_percentiles(data: List[float]) -> Dict[str, float]:
    """Calculates p50, p95, p99 without numpy."""
    if not data:
        return {}
    data = sorted(data)
    n = len(data)
    return {
        "min": data[0],
        "max": data[-1],
        "p50": data[int(n * 0.5)],
        "p95": data[int(n * 0.95)],
        "p99": data[int(n * 0.99)],
        "avg": sum(data) / n
    }

def _shape_str(shape) -> str:
    if shape is None:
        return "unknown"
    return "x".join("?" if d is None else str(d) for d in shape) or "scalar"

def generate_report_json(graph: Graph, parameters: Dict[str, TensorBuffer],
                         trace: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
    """Builds a JSON-compatible report of a graph and, optionally, one traced run."""
    trace = trace or []
    timeline = []
    op_time: Dict[str, float] = {}
    durations = []

    for item in trace:
        duration = item['end'] - item['start']
        durations.append(duration)
        op_time[item['op']] = op_time.get(item['op'], 0.0) + duration
        timeline.append({
            'name': item['name'],
            'op': item['op'],
            'start': item['start'],
            'end': item['end'],
            'duration': duration,
            'shapes': ", ".join(_shape_str(s) for s in item.get('output_shapes', [])),
        })

    report_data = {
        "graph": graph.name,
        "opset": graph.opset,
        "inputs": {v.name: _shape_str(v.shape) for v in graph.inputs},
        "outputs": {v.name: _shape_str(v.shape) for v in graph.outputs},
        "node_count": len(graph.nodes),
        "op_histogram": graph.op_histogram(),
        "parameter_count": sum(p.num_elements for p in parameters.values()),
        "parameter_bytes": sum(p.nbytes for p in parameters.values()),
        "total_us": max((item['end'] for item in timeline), default=0.0),
        "op_time_us": op_time,
        "timeline": timeline,
    }
    if durations:
        report_data["node_latency_stats"] = _calculate_percentiles(durations)
    return report_data

def generate_report(graph: Graph, parameters: Dict[str, TensorBuffer],
                    trace: List[Dict[str, Any]], report_dir: str) -> Dict[str, Any]:
    """Generates all report artifacts."""
    report_data = generate_report_json(graph, parameters, trace)
    output_dir = Path(report_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    with open(output_dir / "report.json", "w") as f:
        json.dump(report_data, f, indent=4)

    viz.export_timeline(report_data['timeline'], str(output_dir / "report.html"))

    print(viz.export_timeline_ascii(report_data['timeline']))
    print(f"\nReports generated in {output_dir.absolute()}")
    if report_data.get('node_latency_stats'):
        print("\nNode Latency Stats (us):")
        for key, value in report_data['node_latency_stats'].items():
            print(f"  {key:<5}: {value:.2f}")
    print(f"\nTotal: {report_data['total_us']:.1f} us")
    return report_data

def format_summary(graph: Graph, parameters: Dict[str, TensorBuffer]) -> str:
    """Human-readable summary of a graph: slots, parameters and op distribution."""
    lines = [f"Graph '{graph.name}' (opset {graph.opset})"]
    lines.append(f"Inputs ({len(graph.inputs)}):")
    for v in graph.inputs:
        lines.append(f"  {v.name}: {_shape_str(v.shape)} {v.dtype}")
    lines.append(f"Outputs ({len(graph.outputs)}):")
    for v in graph.outputs:
        lines.append(f"  {v.name}: {_shape_str(v.shape)} {v.dtype}")
    total = sum(p.num_elements for p in parameters.values())
    lines.append(f"Parameters: {len(parameters)} ({total:,} values)")
    hist = graph.op_histogram()
    lines.append(f"Nodes: {len(graph.nodes)}")
    for op, count in sorted(hist.items(), key=lambda kv: (-kv[1], kv[0])):
        lines.append(f"  {op}: {count}")
    return "\n".join(lines)
