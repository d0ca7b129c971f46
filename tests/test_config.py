import argparse
from pathlib import Path

import pytest
import yaml

from modelport.config import PortConfig


def test_config_yaml_loading(tmp_path: Path):
    """Tests that config is loaded correctly from a YAML file."""
    yaml_content = {
        'output_dir': 'build',
        'input_layout': 'NHWC',
        'top_k': 3,
    }
    yaml_file = tmp_path / "test.yaml"
    with open(yaml_file, 'w') as f:
        yaml.dump(yaml_content, f)

    # Simulate args parsed from CLI, where only config and model are provided
    args = argparse.Namespace(config=str(yaml_file), model="test.onnx", output_dir=None, top_k=None)

    config = PortConfig.from_args(args)

    assert config.output_dir == 'build'
    assert config.input_layout == 'NHWC'
    assert config.top_k == 3
    assert config.model == 'test.onnx'


def test_config_cli_override(tmp_path: Path):
    """Tests that CLI arguments override YAML settings."""
    yaml_content = {
        'output_dir': 'build',
        'input_layout': 'NHWC',
        'top_k': 3,
    }
    yaml_file = tmp_path / "test.yaml"
    with open(yaml_file, 'w') as f:
        yaml.dump(yaml_content, f)

    args = argparse.Namespace(
        config=str(yaml_file),
        model="test.onnx",
        output_dir="dist",  # Override
        top_k=5             # Override
    )

    config = PortConfig.from_args(args)

    assert config.output_dir == 'dist'     # Overridden value
    assert config.top_k == 5               # Overridden value
    assert config.input_layout == 'NHWC'   # Value from YAML


def test_unknown_yaml_keys_are_ignored(tmp_path: Path, caplog):
    yaml_file = tmp_path / "test.yaml"
    yaml_file.write_text("sim_level: CA_FULL\ntop_k: 2\n")
    config = PortConfig()
    config.update_from_yaml(str(yaml_file))
    assert config.top_k == 2
    assert not hasattr(config, 'sim_level')
    assert "sim_level" in caplog.text


def test_missing_config_file_falls_back_to_defaults(tmp_path: Path):
    args = argparse.Namespace(config=str(tmp_path / "absent.yaml"), model=None)
    config = PortConfig.from_args(args)
    assert config.output_dir == 'out'
    assert config.artifact_suffix == '.mpk'


def test_artifact_name():
    assert PortConfig(artifact_suffix="bin").artifact_name("models/net.onnx") == "net.bin"
    assert PortConfig().artifact_name("net.onnx") == "net.mpk"


@pytest.mark.parametrize("kwargs", [{"input_layout": "CHWN"}, {"top_k": 0}])
def test_invalid_values(kwargs):
    with pytest.raises(ValueError):
        PortConfig(**kwargs)
