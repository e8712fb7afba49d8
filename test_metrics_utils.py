"""
Test metrics_utils, manifest and summary helpers against metrics.json files
written by utils_io.save_run.

Run with: pytest test_metrics_utils.py
"""
import json

import matplotlib
matplotlib.use("Agg")

import numpy as np
import pytest
import torch

from permuted_pixels.manifest import build_manifest
from permuted_pixels.metrics_utils import (
    load_metrics,
    get_split_indices,
    get_permutation_key,
    get_performance_metrics,
    get_training_config,
    get_training_history,
    compare_runs,
)
from permuted_pixels.models import build_model
from permuted_pixels.obfuscation import generate_key
from permuted_pixels.summary import summarize_results, plot_histories, results_frame
from permuted_pixels.utils_io import save_run, update_metrics


HISTORY = {
    "train_loss": [1.2, 0.6],
    "train_acc": [0.55, 0.80],
    "val_loss": [0.9, 0.7],
    "val_acc": [0.70, 0.75],
}
HYPER = {"epochs": 2, "batch_size": 128, "lr": 1.0, "optimizer": "Adadelta", "dropout": 0.25, "seed": 0}


@pytest.fixture
def results_root(tmp_path):
    model = build_model("mnist_cnn")
    key = generate_key(20, 28, 28, seed=8)
    for variant, run_key in (("control", None), ("obfuscated", key)):
        save_run(
            results_root=str(tmp_path / variant),
            variant=variant,
            model_name="mnist_cnn",
            model=model,
            history=HISTORY,
            meta={"input_shape": [1, 28, 28], "num_classes": 10},
            hyper=HYPER,
            notes=variant,
            split_indices={"train": np.arange(15), "val": np.arange(15, 20)},
            key=run_key.to_dict() if run_key is not None else None,
        )
        update_metrics(str(tmp_path / variant), test_accuracy=0.74, test_loss=0.71)
    return tmp_path


def test_load_metrics(results_root):
    metrics = load_metrics(str(results_root / "control" / "metrics.json"))
    assert metrics["variant"] == "control"
    assert metrics["best_val_accuracy"] == pytest.approx(0.75)
    assert metrics["final_val_accuracy"] == pytest.approx(0.75)
    assert metrics["env"]["torch"] == torch.__version__
    assert "weights_relpath" not in metrics
    with pytest.raises(FileNotFoundError):
        load_metrics(str(results_root / "missing" / "metrics.json"))


def test_split_indices(results_root):
    indices = get_split_indices(str(results_root / "control" / "metrics.json"))
    assert list(indices["train"]) == list(range(15))
    assert list(indices["val"]) == list(range(15, 20))


def test_permutation_key(results_root):
    assert get_permutation_key(str(results_root / "control" / "metrics.json")) is None
    key = get_permutation_key(str(results_root / "obfuscated" / "metrics.json"))
    assert key == generate_key(20, 28, 28, seed=8)
    assert key.seed == 8


def test_permutation_key_split_argument(results_root):
    path = str(results_root / "obfuscated" / "metrics.json")
    assert get_permutation_key(path, split="test") is None
    update_metrics(str(results_root / "obfuscated"),
                   permutation_key_test=generate_key(6, 28, 28, seed=8).to_dict())
    test_key = get_permutation_key(path, split="test")
    assert test_key.dataset_size == 6
    assert torch.equal(test_key.row_permutation, get_permutation_key(path).row_permutation)
    with pytest.raises(ValueError):
        get_permutation_key(path, split="val")


def test_performance_and_config(results_root):
    path = str(results_root / "obfuscated" / "metrics.json")
    perf = get_performance_metrics(path)
    assert perf["final_train_acc"] == pytest.approx(0.80)
    assert perf["best_val_acc"] == pytest.approx(0.75)
    assert perf["test_acc"] == pytest.approx(0.74)

    config = get_training_config(path)
    assert config["optimizer"] == "Adadelta"
    assert config["batch_size"] == 128

    history = get_training_history(path)
    assert isinstance(history["val_acc"], np.ndarray)
    assert history["val_acc"].tolist() == HISTORY["val_acc"]


def test_compare_runs(results_root):
    comparison = compare_runs([
        str(results_root / "control" / "metrics.json"),
        str(results_root / "obfuscated" / "metrics.json"),
    ])
    assert comparison["variant"] == ["control", "obfuscated"]
    assert comparison["test_acc"] == [0.74, 0.74]
    assert comparison["lr"] == [1.0, 1.0]


def test_manifest_and_summary(results_root):
    manifest_path = build_manifest(str(results_root))
    with open(manifest_path) as f:
        manifest = json.load(f)
    assert [m["variant"] for m in manifest] == ["control", "obfuscated"]
    assert manifest[1]["metrics_relpath"] == "obfuscated/metrics.json"

    df = summarize_results(str(results_root), show_curves=False)
    assert len(df) == 2
    assert set(df["variant"]) == {"control", "obfuscated"}


def test_summary_rebuilds_missing_manifest(results_root):
    df = summarize_results(str(results_root), show_curves=False)
    assert (results_root / "manifest.json").exists()
    assert len(df) == 2


def test_plot_histories_saves_figure(tmp_path):
    fig = plot_histories({"control": HISTORY, "obfuscated": HISTORY}, show=False,
                         save_path=str(tmp_path / "curves.png"))
    assert (tmp_path / "curves.png").exists()
    assert len(fig.axes) == 2


def test_results_frame_drops_history():
    df = results_frame([{"variant": "control", "test_acc": 0.9, "history": HISTORY}])
    assert list(df.columns) == ["variant", "test_acc"]


if __name__ == "__main__":
    raise SystemExit(pytest.main([__file__, "-v"]))
