"""Convolutional Neural Network Engine

This package trains small convolutional networks with hand-written forward
and backward passes over a 3-dimensional tensor, on the host with numba or
on a CUDA device.

Modules
-------

- `tensor_data`: Formats, flat positions and the error types of indexing.
- `tensor`: Defines the core Tensor object, its element access and its host/device mode.
- `tensor_ops`: The operation table shared by the host and device backends.
- `fast_ops`: Provides the core tensor operations using numba (only CPU).
- `fast_conv`: Cross-correlation, convolution backward and pooling kernels using numba (only CPU).
- `cuda_ops`: Provides the core tensor operations using a GPU.
- `operators`: Activation functions with their derivatives and inverses.
- `layer`: The layer protocol and the state every layer carries.
- `fully_connected_layer`, `convolutional_layer`, `pooling_layer`: the layer kinds.
- `network`: Ordered layers, training loop and evaluation.
- `data_space`: A whole corpus packed into one tensor with a shuffle table.
- `batch_handler`: Cuts a shuffled corpus into mini-batches.
- `config`: Training hyperparameters.
- `datasets`: Synthetic 2D point datasets packaged as data spaces.
"""

from .batch_handler import BatchHandler, LastBatchPolicy  # noqa: F401
from .config import TrainingConfig  # noqa: F401
from .convolutional_layer import ConvKernel, ConvolutionalLayer  # noqa: F401
from .data_space import DataSpace  # noqa: F401
from .datasets import datasets  # noqa: F401
from .fully_connected_layer import FullyConnectedLayer  # noqa: F401
from .layer import Layer, LayerKind, SequencingError  # noqa: F401
from .network import EmptyNetworkError, Network, TestResult, ms_to_str  # noqa: F401
from .operators import ActivationKind, PoolingKind  # noqa: F401
from .pooling_layer import PoolingLayer  # noqa: F401
from .tensor import Tensor, check_same_mode, device_backend  # noqa: F401
from .tensor_data import Format, FormatMismatchError, IndexingError  # noqa: F401
from .tensor_ops import UnsupportedModeError  # noqa: F401
from . import fast_ops, fast_conv  # noqa: F401
