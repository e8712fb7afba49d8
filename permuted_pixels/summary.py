import json
from typing import Any, Dict, List, Optional

import pandas as pd
import matplotlib.pyplot as plt
import torch
from pathlib import Path

from .manifest import build_manifest
from .obfuscation import PermutationKey, apply_transform


def summarize_results(results_root: str, show_curves: bool = True) -> pd.DataFrame:
    """
    Summarize the control and obfuscated runs in a results folder.

    Rebuilds manifest.json if it is missing.

    Args:
        results_root: Path to results root (e.g., 'results/mnist')
        show_curves: If True, plot accuracy/loss curves of all runs.

    Returns:
        Pandas DataFrame with summary of manifest.json
    """
    results_root = Path(results_root)
    manifest_path = results_root / "manifest.json"
    if not manifest_path.exists():
        build_manifest(str(results_root))

    with open(manifest_path, "r") as f:
        manifest = json.load(f)
    if not manifest:
        raise FileNotFoundError(f"No runs with metrics.json found under {results_root}")
    df = pd.DataFrame(manifest)

    display_cols = ["variant", "model", "best_val_accuracy", "test_accuracy", "epochs", "notes"]
    print("=== Run Summary ===")
    print(df[display_cols].sort_values(["variant"]).to_string(index=False))

    if show_curves:
        histories = {}
        for entry in manifest:
            metrics_path = results_root / entry["metrics_relpath"]
            with open(metrics_path, "r") as f:
                histories[entry["variant"]] = json.load(f)["history"]
        plot_histories(histories)

    return df


def plot_histories(
    histories: Dict[str, Dict[str, List[float]]],
    show: bool = True,
    save_path: Optional[str] = None
):
    """
    Plot accuracy and loss curves per variant side by side.

    Args:
        histories: {'control': history, 'obfuscated': history}, each history
                   holding train_acc/val_acc/train_loss/val_loss lists
        show: Call plt.show() (set False for headless use)
        save_path: Optional path to write the figure to

    Returns:
        matplotlib Figure
    """
    fig, (ax_acc, ax_loss) = plt.subplots(1, 2, figsize=(12, 4))
    for variant, hist in histories.items():
        if "train_acc" in hist:
            ax_acc.plot(hist["train_acc"], label=f"{variant} train")
        if "val_acc" in hist:
            ax_acc.plot(hist["val_acc"], linestyle="--", label=f"{variant} val")
        if "train_loss" in hist:
            ax_loss.plot(hist["train_loss"], label=f"{variant} train")
        if "val_loss" in hist:
            ax_loss.plot(hist["val_loss"], linestyle="--", label=f"{variant} val")

    ax_acc.set_title("Accuracy")
    ax_loss.set_title("Loss")
    for ax in (ax_acc, ax_loss):
        ax.set_xlabel("Epoch")
        ax.legend()
    fig.tight_layout()

    if save_path:
        fig.savefig(save_path, bbox_inches="tight")
    if show:
        plt.show()
    return fig


def results_frame(results: List[Dict[str, Any]]) -> pd.DataFrame:
    """DataFrame of run_comparison() results without the history column."""
    return pd.DataFrame([{k: v for k, v in r.items() if k != "history"} for r in results])


def show_obfuscation_examples(
    images: torch.Tensor,
    labels: torch.Tensor,
    key: PermutationKey,
    n: int = 5,
    show: bool = True,
    save_path: Optional[str] = None
):
    """
    Show the first n images before and after obfuscation.

    The top row is original sample key.sample_permutation[i], the bottom row
    is obfuscated sample i, so each column shows the same image.

    Returns:
        matplotlib Figure
    """
    obf_images, obf_labels = apply_transform(images, labels, key)
    sample = key.sample_permutation
    n = min(n, len(obf_images))
    if n == 0:
        raise ValueError("No images to show")

    fig, axes = plt.subplots(2, n, figsize=(2 * n, 4), squeeze=False)
    for i in range(n):
        original = images[int(sample[i])].reshape(key.image_shape)
        scrambled = obf_images[i].reshape(key.image_shape)
        axes[0][i].imshow(original.cpu().numpy(), cmap="gray")
        axes[0][i].set_title(f"label {int(obf_labels[i])}")
        axes[1][i].imshow(scrambled.cpu().numpy(), cmap="gray")
        axes[0][i].axis("off")
        axes[1][i].axis("off")
    fig.suptitle("Shared row/column permutation")
    fig.tight_layout()

    if save_path:
        fig.savefig(save_path, bbox_inches="tight")
    if show:
        plt.show()
    return fig
