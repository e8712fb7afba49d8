from typing import Dict
import torch.nn as nn

from .mnist_cnn import build as mnist_cnn_build

REGISTRY = {
    "mnist_cnn": mnist_cnn_build,
}

# Metadata registry (avoids model instantiation for config lookup)
META_REGISTRY = {
    "mnist_cnn": {"input_shape": [1, 28, 28], "num_classes": 10},
}


def build_model(
    name: str,
    num_classes: int = 10,
    dropout: float = 0.25
) -> nn.Module:
    """
    Build model from registry.

    Args:
        name: Model name (e.g., 'mnist_cnn')
        num_classes: Number of output classes
        dropout: Dropout rate after the pooling layer

    Returns:
        PyTorch model

    Example:
        >>> model = build_model("mnist_cnn", num_classes=10)
    """
    if name not in REGISTRY:
        raise ValueError(f"Unknown model: {name}. Available: {list(REGISTRY.keys())}")

    build_fn = REGISTRY[name]
    model, _ = build_fn(num_classes=num_classes, dropout=dropout)
    return model


def get_model_config(name: str) -> Dict:
    """
    Get model configuration metadata.

    Args:
        name: Model name (e.g., 'mnist_cnn')

    Returns:
        Dict with keys: 'input_shape', 'num_classes'
    """
    if name not in META_REGISTRY:
        raise ValueError(f"Unknown model: {name}. Available: {list(META_REGISTRY.keys())}")

    return {k: list(v) if isinstance(v, list) else v for k, v in META_REGISTRY[name].items()}
