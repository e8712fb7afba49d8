import json, platform, time
from pathlib import Path
from typing import Dict, List, Optional
import torch
import numpy as np


def _atomic_write_json(path: Path, obj: dict) -> None:
    tmp = path.with_suffix(path.suffix + ".tmp")
    with open(tmp, "w") as f:
        json.dump(obj, f, indent=2)
    tmp.replace(path)


def save_run(
    results_root: str,
    variant: str,
    model_name: str,
    model: torch.nn.Module,
    history: Dict[str, List[float]],
    meta: dict,
    hyper: dict,
    notes: str = "",
    split_indices: Optional[dict] = None,
    key: Optional[dict] = None,
) -> Dict[str, str]:
    """
    Persist one run as {results_root}/best.pth and {results_root}/metrics.json.

    Args:
        variant: 'control' or 'obfuscated'
        history: Per-epoch train_loss/train_acc/val_loss/val_acc lists
        split_indices: 'train'/'val' index arrays, stored as lists
        key: PermutationKey.to_dict() of the training data, obfuscated runs only
    """
    run_dir = Path(results_root)
    run_dir.mkdir(parents=True, exist_ok=True)

    weights_path = run_dir / "best.pth"
    torch.save(model.state_dict(), weights_path)

    val_acc = [float(v) for v in history.get("val_acc", [])]
    metrics = {
        "variant": variant,
        "model": model_name,
        "epochs": int(hyper.get("epochs", len(val_acc))),
        "best_val_accuracy": max(val_acc) if val_acc else 0.0,
        "final_val_accuracy": val_acc[-1] if val_acc else None,
        "history": {name: [float(v) for v in values] for name, values in history.items()},
        "meta": meta,
        "hyper": hyper,
        "notes": notes,
        "saved_at": time.strftime("%Y-%m-%d %H:%M:%S"),
        "env": {"python": platform.python_version(), "torch": torch.__version__},
    }
    if split_indices is not None:
        metrics["split_indices"] = {name: np.asarray(idx).tolist() for name, idx in split_indices.items()}
    if key is not None:
        metrics["permutation_key"] = key

    metrics_path = run_dir / "metrics.json"
    _atomic_write_json(metrics_path, metrics)
    return {"weights_path": str(weights_path), "metrics_path": str(metrics_path), "run_dir": str(run_dir)}


def update_metrics(results_root: str, **values) -> str:
    """Merge extra top-level values (e.g. test_accuracy) into an existing metrics.json."""
    metrics_path = Path(results_root) / "metrics.json"
    with open(metrics_path, "r") as f:
        metrics = json.load(f)
    metrics.update(values)
    _atomic_write_json(metrics_path, metrics)
    return str(metrics_path)


def save_preds(
    results_root: str,
    split: str,
    model: torch.nn.Module,
    loader,
    device: str
) -> str:
    """
    Write {results_root}/preds_{split}.npz with logits, labels and argmax preds,
    in the loader's sample order.
    """
    model.eval()
    logits, labels = [], []
    with torch.no_grad():
        for images, targets in loader:
            logits.append(model(images.to(device)).cpu())
            labels.append(targets.cpu())

    logits = torch.cat(logits).numpy() if logits else np.zeros((0, 0), dtype=np.float32)
    labels = torch.cat(labels).numpy() if labels else np.zeros((0,), dtype=np.int64)

    run_dir = Path(results_root)
    run_dir.mkdir(parents=True, exist_ok=True)
    out_path = run_dir / f"preds_{split}.npz"
    np.savez_compressed(out_path, logits=logits, labels=labels,
                        preds=logits.argmax(axis=1) if len(logits) else labels.copy())
    return str(out_path)
