"""
Default hyperparameters shared by the control and obfuscated runs.

Both runs of a comparison read the same dict, so they train the same
topology with the same settings.
"""

from typing import Any, Dict

DEFAULT_CONFIG: Dict[str, Any] = {
    "model_name": "mnist_cnn",
    "num_classes": 10,
    "epochs": 12,
    "batch_size": 128,
    "lr": 1.0,             # Adadelta
    "val_split": 0.1,
    "dropout": 0.25,
    "seed": 0,
}


def make_config(**overrides) -> Dict[str, Any]:
    """
    Return a copy of DEFAULT_CONFIG with overrides applied.

    Raises:
        ValueError: If an override names an unknown key or an invalid value.
    """
    unknown = set(overrides) - set(DEFAULT_CONFIG)
    if unknown:
        raise ValueError(f"Unknown config keys: {sorted(unknown)}. Available: {sorted(DEFAULT_CONFIG)}")

    config = DEFAULT_CONFIG.copy()
    config.update(overrides)

    if not 0.0 < config["val_split"] < 1.0:
        raise ValueError(f"val_split must be in (0, 1), got {config['val_split']}")
    if config["epochs"] < 1 or config["batch_size"] < 1:
        raise ValueError("epochs and batch_size must be positive")
    return config
