import json
from pathlib import Path


def build_manifest(results_root: str, overwrite: bool = True) -> str:
    """
    Scan results/{variant}/ folders under results_root and rebuild manifest.json.

    Args:
        results_root: path to the results root (e.g. 'results/mnist')
        overwrite: if True, write manifest.json; else just return the path without writing.

    Returns:
        Path to manifest.json (string)
    """
    lib_root = Path(results_root)
    manifest = []

    for variant_dir in sorted(lib_root.iterdir()):
        if not variant_dir.is_dir():
            continue
        metrics_path = variant_dir / "metrics.json"
        if not metrics_path.exists():
            continue
        with open(metrics_path, "r") as f:
            metrics = json.load(f)
        manifest.append({
            "variant": metrics.get("variant", variant_dir.name),
            "model": metrics.get("model"),
            "best_val_accuracy": metrics.get("best_val_accuracy"),
            "test_accuracy": metrics.get("test_accuracy"),
            "epochs": metrics.get("epochs"),
            "weights_relpath": str(Path(variant_dir.name) / "best.pth"),
            "metrics_relpath": str(Path(variant_dir.name) / "metrics.json"),
            "notes": metrics.get("notes", ""),
            "updated_at": metrics.get("saved_at", "")
        })

    manifest_path = lib_root / "manifest.json"
    if overwrite:
        with open(manifest_path, "w") as f:
            json.dump(manifest, f, indent=2)
    return str(manifest_path)
