"""
PermutedPixels: shared row/column permutation obfuscation for image datasets.

Obfuscates a dataset with a seeded PermutationKey, then trains the same
CNN on raw and obfuscated data to compare their accuracy.
"""

# Obfuscation
from .obfuscation import (
    PermutationKey,
    ObfuscatedDataset,
    DimensionMismatchError,
    NonDeterministicKeyWarning,
    generate_key,
    apply_transform,
    invert_transform,
    invert_permutation,
    permute_image_tensor,
    save_key,
    load_key,
)

# Configuration
from .config import DEFAULT_CONFIG, make_config

# Data utilities
from .data import (
    load_mnist,
    mnist_dataset,
    split_indices,
    create_loader,
)

# Model utilities
from .models import (
    build_model,
    get_model_config,
    REGISTRY as MODEL_REGISTRY,
)

# Training utilities
from .train_utils import (
    train_model,
    evaluate_model,
)

# Experiments
from .experiments import (
    run_single_experiment,
    run_comparison,
    print_experiment_summary,
)

# Metrics utilities
from .metrics_utils import (
    load_metrics,
    get_split_indices,
    get_permutation_key,
    get_performance_metrics,
    get_training_config,
    get_training_history,
    compare_runs,
)

__all__ = [
    # Obfuscation
    'PermutationKey',
    'ObfuscatedDataset',
    'DimensionMismatchError',
    'NonDeterministicKeyWarning',
    'generate_key',
    'apply_transform',
    'invert_transform',
    'invert_permutation',
    'permute_image_tensor',
    'save_key',
    'load_key',
    # Configuration
    'DEFAULT_CONFIG',
    'make_config',
    # Data
    'load_mnist',
    'mnist_dataset',
    'split_indices',
    'create_loader',
    # Models
    'build_model',
    'get_model_config',
    'MODEL_REGISTRY',
    # Training
    'train_model',
    'evaluate_model',
    # Experiments
    'run_single_experiment',
    'run_comparison',
    'print_experiment_summary',
    # Metrics
    'load_metrics',
    'get_split_indices',
    'get_permutation_key',
    'get_performance_metrics',
    'get_training_config',
    'get_training_history',
    'compare_runs',
]
