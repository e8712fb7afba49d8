"""
Utility functions for reading and extracting information from metrics.json files.

These functions provide a clean API for accessing training run metadata,
including split indices, the permutation key, training configuration and
performance metrics.
"""

import json
from pathlib import Path
from typing import Dict, List, Optional, Any
import numpy as np

from .obfuscation import PermutationKey


def load_metrics(metrics_path: str) -> Dict[str, Any]:
    """
    Load metrics.json file.

    Raises:
        FileNotFoundError: If metrics file does not exist
        json.JSONDecodeError: If file is not valid JSON
    """
    metrics_path = Path(metrics_path)
    if not metrics_path.exists():
        raise FileNotFoundError(f"Metrics file not found: {metrics_path}")

    with open(metrics_path, 'r') as f:
        return json.load(f)


def get_split_indices(metrics_path: str) -> Dict[str, np.ndarray]:
    """
    Extract train/val split indices as numpy arrays.

    Returns an empty dict if split_indices is not stored.
    """
    metrics = load_metrics(metrics_path)
    return {
        split: np.array(indices)
        for split, indices in metrics.get('split_indices', {}).items()
    }


def get_permutation_key(metrics_path: str, split: str = "train") -> Optional[PermutationKey]:
    """
    Rebuild the PermutationKey an obfuscated run used on a split.

    Args:
        metrics_path: Path to metrics.json file
        split: 'train' (training/validation data) or 'test' (order of preds_test.npz)

    Returns:
        PermutationKey, or None for control runs.

    Example:
        >>> key = get_permutation_key('results/obfuscated/metrics.json')
        >>> images, labels = invert_transform(obf_images, obf_labels, key)
    """
    if split not in ("train", "test"):
        raise ValueError(f"split must be 'train' or 'test', got {split!r}")
    metrics = load_metrics(metrics_path)
    data = metrics.get('permutation_key' if split == "train" else 'permutation_key_test')
    if data is None:
        return None
    return PermutationKey.from_dict(data)


def get_performance_metrics(metrics_path: str) -> Dict[str, float]:
    """
    Extract performance metrics from training run.

    Returns:
        Dictionary containing:
            - final_train_acc, final_train_loss
            - final_val_acc, final_val_loss
            - best_val_acc
            - test_acc, test_loss (None if not evaluated)
    """
    metrics = load_metrics(metrics_path)
    history = metrics.get('history', {})

    def get_final(key):
        values = history.get(key, [])
        return values[-1] if values else None

    return {
        'final_train_acc': get_final('train_acc'),
        'final_train_loss': get_final('train_loss'),
        'final_val_acc': metrics.get('final_val_accuracy'),
        'final_val_loss': get_final('val_loss'),
        'best_val_acc': metrics.get('best_val_accuracy'),
        'test_acc': metrics.get('test_accuracy'),
        'test_loss': metrics.get('test_loss')
    }


def get_training_config(metrics_path: str) -> Dict[str, Any]:
    """Extract epochs, batch_size, lr, optimizer, dropout and seed."""
    hyper = load_metrics(metrics_path).get('hyper', {})

    return {
        'epochs': hyper.get('epochs'),
        'batch_size': hyper.get('batch_size'),
        'lr': hyper.get('lr'),
        'optimizer': hyper.get('optimizer'),
        'dropout': hyper.get('dropout'),
        'seed': hyper.get('seed'),
    }


def get_training_history(metrics_path: str) -> Dict[str, np.ndarray]:
    """
    Extract full training history curves.

    Returns:
        Dictionary with keys 'train_loss', 'train_acc', 'val_loss', 'val_acc'
        mapping to numpy arrays of per-epoch values.
    """
    history = load_metrics(metrics_path).get('history', {})

    return {
        key: np.array(values) if values else np.array([])
        for key, values in history.items()
    }


def compare_runs(metrics_paths: List[str]) -> Dict[str, List[Any]]:
    """
    Compare multiple training runs side-by-side.

    Returns:
        Dictionary with metrics as keys and lists of values as values.
        Each list has one entry per provided metrics file.

    Example:
        >>> comparison = compare_runs(['results/control/metrics.json',
        ...                            'results/obfuscated/metrics.json'])
        >>> print(comparison['test_acc'])  # [0.99, 0.98]
    """
    comparison = {
        'path': [],
        'variant': [],
        'model': [],
        'best_val_acc': [],
        'test_acc': [],
        'epochs': [],
        'lr': []
    }

    for path in metrics_paths:
        metrics = load_metrics(path)
        comparison['path'].append(path)
        comparison['variant'].append(metrics.get('variant'))
        comparison['model'].append(metrics.get('model'))
        comparison['best_val_acc'].append(metrics.get('best_val_accuracy'))
        comparison['test_acc'].append(metrics.get('test_accuracy'))
        comparison['epochs'].append(metrics.get('epochs'))
        comparison['lr'].append(metrics.get('hyper', {}).get('lr'))

    return comparison
