import numpy as np
import pytest
import onnx
from onnx import helper, TensorProto, numpy_helper


W_VALUES = np.array([[1.0, 2.0], [3.0, 4.0]], dtype=np.float32)
B_VALUES = np.array([0.5, -1.0], dtype=np.float32)


def make_linear_model(opset: int = 13) -> onnx.ModelProto:
    """X[N,2] -> MatMul(W) -> Add(B) -> Y[N,2] with a fixed 2x2 weight and bias."""
    nodes = [
        helper.make_node('MatMul', ['X', 'W'], ['XW'], name='matmul1'),
        helper.make_node('Add', ['XW', 'B'], ['Y'], name='add1'),
    ]
    graph_def = helper.make_graph(
        nodes,
        'linear',
        [helper.make_tensor_value_info('X', TensorProto.FLOAT, ['N', 2])],
        [helper.make_tensor_value_info('Y', TensorProto.FLOAT, ['N', 2])],
        [numpy_helper.from_array(W_VALUES, 'W'), numpy_helper.from_array(B_VALUES, 'B')],
    )
    return helper.make_model(graph_def, producer_name='pytest',
                             opset_imports=[helper.make_opsetid('', opset)])


def make_cnn_model() -> onnx.ModelProto:
    """A small image classifier: Conv -> BN -> Relu -> MaxPool -> GAP -> Flatten -> Gemm -> Softmax."""
    rng = np.random.default_rng(0)
    inits = [
        numpy_helper.from_array(rng.standard_normal((4, 3, 3, 3)).astype(np.float32), 'conv_w'),
        numpy_helper.from_array(rng.standard_normal(4).astype(np.float32), 'conv_b'),
        numpy_helper.from_array(np.ones(4, dtype=np.float32), 'bn_scale'),
        numpy_helper.from_array(np.zeros(4, dtype=np.float32), 'bn_bias'),
        numpy_helper.from_array(np.full(4, 0.1, dtype=np.float32), 'bn_mean'),
        numpy_helper.from_array(np.full(4, 2.0, dtype=np.float32), 'bn_var'),
        numpy_helper.from_array(rng.standard_normal((3, 4)).astype(np.float32), 'fc_w'),
        numpy_helper.from_array(rng.standard_normal(3).astype(np.float32), 'fc_b'),
    ]
    nodes = [
        helper.make_node('Conv', ['image', 'conv_w', 'conv_b'], ['c1'], name='conv1',
                         pads=[1, 1, 1, 1], strides=[1, 1]),
        helper.make_node('BatchNormalization', ['c1', 'bn_scale', 'bn_bias', 'bn_mean', 'bn_var'],
                         ['b1'], name='bn1'),
        helper.make_node('Relu', ['b1'], ['r1'], name='relu1'),
        helper.make_node('MaxPool', ['r1'], ['p1'], name='pool1', kernel_shape=[2, 2], strides=[2, 2]),
        helper.make_node('GlobalAveragePool', ['p1'], ['g1'], name='gap1'),
        helper.make_node('Flatten', ['g1'], ['f1'], name='flatten1', axis=1),
        helper.make_node('Gemm', ['f1', 'fc_w', 'fc_b'], ['logits'], name='fc1', transB=1),
        helper.make_node('Softmax', ['logits'], ['probs'], name='softmax1', axis=1),
    ]
    graph_def = helper.make_graph(
        nodes,
        'tiny-cnn',
        [helper.make_tensor_value_info('image', TensorProto.FLOAT, ['N', 3, 8, 8])],
        [helper.make_tensor_value_info('probs', TensorProto.FLOAT, ['N', 3])],
        inits,
    )
    return helper.make_model(graph_def, producer_name='pytest',
                             opset_imports=[helper.make_opsetid('', 13)])


@pytest.fixture
def linear_model():
    return make_linear_model()


@pytest.fixture
def cnn_model():
    return make_cnn_model()


@pytest.fixture
def linear_onnx_path(tmp_path, linear_model):
    path = tmp_path / "linear.onnx"
    onnx.save(linear_model, str(path))
    return path
