"""
Quick test of the experiments module with minimal epochs on synthetic data.

Run with: pytest test_experiments.py
"""
import json

import numpy as np
import pytest
import torch

from permuted_pixels.config import make_config
from permuted_pixels.experiments import (
    make_keys,
    run_single_experiment,
    run_comparison,
    print_experiment_summary,
)
from permuted_pixels.metrics_utils import get_permutation_key
from permuted_pixels.obfuscation import NonDeterministicKeyWarning, invert_transform, apply_transform


def synthetic_split(n, seed):
    g = torch.Generator().manual_seed(seed)
    return torch.rand(n, 1, 28, 28, generator=g), torch.randint(0, 10, (n,), generator=g)


def quick_config():
    return make_config(epochs=1, batch_size=8, val_split=0.25, seed=0)


def test_make_keys_share_spatial_permutation():
    train_key, test_key = make_keys(40, 12, (28, 28), seed=5)
    assert train_key.dataset_size == 40
    assert test_key.dataset_size == 12
    assert torch.equal(train_key.row_permutation, test_key.row_permutation)
    assert torch.equal(train_key.column_permutation, test_key.column_permutation)


def test_make_keys_without_seed_still_share_spatial_permutation():
    with pytest.warns(NonDeterministicKeyWarning):
        train_key, test_key = make_keys(30, 10, (28, 28), seed=None)
    assert torch.equal(train_key.row_permutation, test_key.row_permutation)
    assert torch.equal(train_key.column_permutation, test_key.column_permutation)
    assert not train_key.is_deterministic
    assert not test_key.is_deterministic
    assert test_key.dataset_size == 10


def test_comparison_without_seed_warns_and_completes(tmp_path):
    config = make_config(epochs=1, batch_size=8, val_split=0.25, seed=None)
    with pytest.warns(NonDeterministicKeyWarning):
        results = run_comparison(
            config=config,
            train_data=synthetic_split(24, seed=5),
            test_data=synthetic_split(8, seed=6),
            results_root=tmp_path,
            device="cpu",
        )
    assert [r['variant'] for r in results] == ["control", "obfuscated"]
    path = str(tmp_path / "obfuscated" / "metrics.json")
    key = get_permutation_key(path)
    assert key.seed is None and not key.is_deterministic
    assert torch.equal(key.column_permutation, get_permutation_key(path, split="test").column_permutation)


def test_single_experiment_without_saving():
    train_data = synthetic_split(32, seed=1)
    test_data = synthetic_split(8, seed=2)

    result = run_single_experiment("control", train_data, test_data, quick_config(), device="cpu")

    assert result['variant'] == "control"
    assert result['model'] == "mnist_cnn"
    assert 0.0 <= result['test_acc'] <= 1.0
    assert result['best_epoch'] == 1
    assert len(result['history']['val_acc']) == 1


def test_comparison_writes_both_runs(tmp_path):
    train_data = synthetic_split(40, seed=1)
    test_data = synthetic_split(12, seed=2)

    results = run_comparison(
        config=quick_config(),
        train_data=train_data,
        test_data=test_data,
        results_root=tmp_path,
        device="cpu",
    )
    print_experiment_summary(results)

    assert [r['variant'] for r in results] == ["control", "obfuscated"]
    for variant in ("control", "obfuscated"):
        out_path = tmp_path / variant
        assert (out_path / "best.pth").exists(), "Model checkpoint not saved"
        assert (out_path / "metrics.json").exists(), "Metrics not saved"
        assert (out_path / "preds_val.npz").exists(), "Val predictions not saved"
        assert (out_path / "preds_test.npz").exists(), "Test predictions not saved"
        with open(out_path / "metrics.json") as f:
            metrics = json.load(f)
        assert metrics['variant'] == variant
        assert 'test_accuracy' in metrics
        assert metrics['hyper']['optimizer'] == "Adadelta"

    # Control run carries no key, obfuscated run can be inverted with its stored key
    assert get_permutation_key(str(tmp_path / "control" / "metrics.json")) is None
    key = get_permutation_key(str(tmp_path / "obfuscated" / "metrics.json"))
    assert key is not None and key.dataset_size == 40
    obf_images, obf_labels = apply_transform(*train_data, key)
    images, labels = invert_transform(obf_images, obf_labels, key)
    assert torch.equal(images, train_data[0])
    assert torch.equal(labels, train_data[1])

    # preds_test.npz follows the stored test key's sample order
    test_key = get_permutation_key(str(tmp_path / "obfuscated" / "metrics.json"), split="test")
    assert test_key.dataset_size == 12
    assert torch.equal(test_key.row_permutation, key.row_permutation)
    preds = np.load(tmp_path / "obfuscated" / "preds_test.npz")
    _, obf_test_labels = apply_transform(*test_data, test_key)
    assert preds["labels"].tolist() == obf_test_labels.tolist()
    assert get_permutation_key(str(tmp_path / "control" / "metrics.json"), split="test") is None


def test_comparison_uses_identical_hyperparameters(tmp_path):
    run_comparison(
        config=quick_config(),
        train_data=synthetic_split(24, seed=3),
        test_data=synthetic_split(8, seed=4),
        results_root=tmp_path,
        device="cpu",
    )
    with open(tmp_path / "control" / "metrics.json") as f:
        control = json.load(f)
    with open(tmp_path / "obfuscated" / "metrics.json") as f:
        obfuscated = json.load(f)
    assert control['hyper'] == obfuscated['hyper']
    assert control['model'] == obfuscated['model']
    assert control['meta'] == obfuscated['meta']


def test_print_summary_handles_empty(capsys):
    print_experiment_summary([])
    assert "No results" in capsys.readouterr().out


if __name__ == "__main__":
    raise SystemExit(pytest.main([__file__, "-v"]))
