from enum import Enum


class OpKind(str, Enum):
    """The closed set of ONNX operators modelport can execute."""

    # Elementwise arithmetic
    ADD = "Add"
    SUB = "Sub"
    MUL = "Mul"
    DIV = "Div"

    # Linear algebra
    MATMUL = "MatMul"
    GEMM = "Gemm"
    CONV = "Conv"

    # Activations
    RELU = "Relu"
    LEAKY_RELU = "LeakyRelu"
    SIGMOID = "Sigmoid"
    TANH = "Tanh"
    SOFTMAX = "Softmax"
    CLIP = "Clip"

    # Normalization and pooling
    BATCHNORM = "BatchNormalization"
    MAXPOOL = "MaxPool"
    AVGPOOL = "AveragePool"
    GLOBAL_AVGPOOL = "GlobalAveragePool"

    # Shape manipulation
    FLATTEN = "Flatten"
    RESHAPE = "Reshape"
    TRANSPOSE = "Transpose"
    CONCAT = "Concat"

    # Pass-through at inference time
    IDENTITY = "Identity"
    DROPOUT = "Dropout"

    def __str__(self) -> str:
        return self.value
