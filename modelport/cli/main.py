from __future__ import annotations
import argparse
from pathlib import Path

import numpy as np

from ..compiler.converter import convert
from ..config import PortConfig
from ..errors import ModelportError
from ..ir.onnx_importer import load_onnx
from ..ir.tensor import TensorBuffer
from ..runtime.classifier import classify, top_k
from ..runtime.executor import predict
from ..runtime.preprocess import normalize_batch
from ..store import model_store
from ..utils.logging import get_logger
from ..utils.reporting import format_summary, generate_report
from ..utils.vocab import load_vocabulary


def cmd_convert(args):
    """Handles the 'convert' command."""
    config = PortConfig.from_args(args)
    logger = get_logger("modelport", config.log_level)

    status = convert(config.model, config.output_dir, config)
    if status.ok:
        print(f"[OK] Converted to {status.destination}")
        return 0
    logger.warning("Conversion finished with a warning")
    print(f"[WARN] {status.reason}")
    return 1


def _load_batch(path: str, config: PortConfig) -> TensorBuffer:
    arr = np.load(path)
    if np.issubdtype(arr.dtype, np.integer) and arr.ndim == 4:
        # Raw pixels: normalize and lay out for the model
        return normalize_batch(arr, layout=config.input_layout, scale=config.pixel_scale)
    return TensorBuffer.wrap(arr.astype(np.float32, copy=False))


def cmd_predict(args):
    """Handles the 'predict' command."""
    config = PortConfig.from_args(args)
    get_logger("modelport", config.log_level)
    if not config.vocabulary:
        print("[ERROR] A vocabulary file is required (--vocab or 'vocabulary' in config)")
        return 2

    graph, params = model_store.load(args.artifact)
    vocabulary = load_vocabulary(config.vocabulary)
    batch = _load_batch(args.input, config)

    trace = [] if config.report_dir else None
    scores = predict(graph, params, batch, trace=trace)

    if config.top_k > 1:
        for i, row in enumerate(top_k(scores, vocabulary, config.top_k)):
            ranked = ", ".join(f"{label} ({score:.4f})" for label, score in row)
            print(f"{i}: {ranked}")
    else:
        for i, label in enumerate(classify(scores, vocabulary)):
            print(f"{i}: {label}")

    if config.report_dir:
        generate_report(graph, params, trace, config.report_dir)
    return 0


def cmd_inspect(args):
    """Handles the 'inspect' command."""
    get_logger("modelport", args.log_level or "WARNING")
    path = Path(args.model)
    if path.suffix == ".onnx":
        graph, params = load_onnx(path)
    else:
        graph, params = model_store.load(path)
    print(format_summary(graph, params))
    return 0


def build_parser():
    p = argparse.ArgumentParser(
        prog="modelport",
        description="Convert ONNX models to native artifacts and run batched classification",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    p.add_argument("-c", "--config", type=str, default=None,
                   help="Path to YAML config file to override defaults")
    p.add_argument("--log-level", type=str, default=None, dest="log_level",
                   choices=["DEBUG", "INFO", "WARNING", "ERROR"], help="Logging level")
    sub = p.add_subparsers(dest="cmd", required=True)

    # --- Convert Command ---
    pc = sub.add_parser("convert", help="Convert ONNX -> native artifact",
                        formatter_class=argparse.ArgumentDefaultsHelpFormatter)
    pc.add_argument("model", nargs='?', default=None,
                    help="Path to ONNX model (optional if specified in config)")
    pc.add_argument("-o", "--output-dir", type=str, default=None, dest="output_dir",
                    help="Directory for the converted artifact")
    pc.add_argument("--suffix", type=str, default=None, dest="artifact_suffix",
                    help="Artifact file extension")
    pc.set_defaults(func=cmd_convert)

    # --- Predict Command ---
    pr = sub.add_parser("predict", help="Classify a batch with a converted artifact",
                        formatter_class=argparse.ArgumentDefaultsHelpFormatter)
    pr.add_argument("artifact", help="Path to the native artifact")
    pr.add_argument("input", help="Path to a .npy batch (uint8 pixels NHWC, or model-ready floats)")
    pr.add_argument("--vocab", type=str, default=None, dest="vocabulary",
                    help="Label file, one label per line")
    pr.add_argument("--layout", type=str, default=None, dest="input_layout",
                    choices=["NCHW", "NHWC"], help="Channel layout expected by the model")
    pr.add_argument("--top-k", type=int, default=None, dest="top_k",
                    help="Print the k best labels per row")
    pr.add_argument("--report", type=str, default=None, dest="report_dir",
                    help="Directory to save a per-node timing report")
    pr.set_defaults(func=cmd_predict)

    # --- Inspect Command ---
    pi = sub.add_parser("inspect", help="Summarize an ONNX model or native artifact",
                        formatter_class=argparse.ArgumentDefaultsHelpFormatter)
    pi.add_argument("model", help="Path to .onnx model or native artifact")
    pi.set_defaults(func=cmd_inspect)

    return p


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return args.func(args)
    except ModelportError as e:
        print(f"[ERROR] {e}")
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
