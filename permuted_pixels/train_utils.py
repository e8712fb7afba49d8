from typing import Dict, Any, Optional
from pathlib import Path

import logging
import sys

import torch
import torch.nn as nn
import torch.optim as optim
from torch.utils.data import DataLoader

logging.basicConfig(level=logging.INFO, stream=sys.stdout, format="%(message)s", force=True)
logger = logging.getLogger("train")
logger.setLevel(logging.INFO)
logger.propagate = False
_handler = logging.StreamHandler(sys.stdout)
_handler.setFormatter(logging.Formatter("%(message)s"))
logger.handlers = [_handler]

from .obfuscation import PermutationKey, key_summary
from .utils_io import save_run, save_preds


def evaluate_model(
    model: nn.Module,
    loader: DataLoader,
    device: str = "cpu",
    criterion = None
) -> Dict[str, float]:
    """
    Evaluate model on a data loader.

    Args:
        model: PyTorch model
        loader: DataLoader yielding (images, labels)
        device: Device to use ('cuda' or 'cpu')
        criterion: Loss function (if None, uses CrossEntropyLoss)

    Returns:
        Dict with 'loss' and 'accuracy' keys (both 0.0 for an empty loader)
    """
    if criterion is None:
        criterion = nn.CrossEntropyLoss()

    device_obj = torch.device(device)
    model = model.to(device_obj)
    model.eval()

    total_loss, correct, total = 0.0, 0, 0

    with torch.no_grad():
        for images, labels in loader:
            images, labels = images.to(device_obj), labels.to(device_obj)
            outputs = model(images)
            loss = criterion(outputs, labels)
            total_loss += loss.item() * images.size(0)
            correct += (outputs.argmax(1) == labels).sum().item()
            total += labels.size(0)

    if total == 0:
        return {'loss': 0.0, 'accuracy': 0.0}
    return {
        'loss': total_loss / total,
        'accuracy': correct / total
    }


def _log_configuration(model_name, variant, key, train_loader, val_loader, epochs, lr, device_obj):
    logger.info("\n" + "=" * 80)
    logger.info("TRAINING CONFIGURATION")
    logger.info("=" * 80)
    logger.info("")
    logger.info("MODEL")
    logger.info(f"  Architecture:        {model_name}")
    logger.info(f"  Variant:             {variant}")
    logger.info("")
    logger.info("DATA")
    logger.info(f"  Train Samples:       {len(train_loader.dataset)}")
    logger.info(f"  Val Samples:         {len(val_loader.dataset)}")
    logger.info(f"  Batch Size:          {train_loader.batch_size}")
    if key is not None:
        logger.info("")
        logger.info("PERMUTATION KEY")
        for line in key_summary(key):
            logger.info(f"  {line}")
    logger.info("")
    logger.info("TRAINING")
    logger.info(f"  Epochs:              {epochs}")
    logger.info(f"  Optimizer:           Adadelta")
    logger.info(f"  Learning Rate:       {lr}")
    logger.info(f"  Loss Function:       CrossEntropyLoss")
    logger.info("")
    logger.info("DEVICE")
    logger.info(f"  Device:              {device_obj}")
    if device_obj.type == "cuda":
        logger.info(f"  GPU Name:            {torch.cuda.get_device_name(device_obj)}")
    logger.info("=" * 80 + "\n")


def train_model(
    model: nn.Module,
    train_loader: DataLoader,
    val_loader: DataLoader,
    epochs: int = 12,
    lr: float = 1.0,
    device: str = "cpu",
    out_path: Optional[str] = None,
    config: Optional[Dict] = None,
) -> Dict[str, Any]:
    """
    Train a classification model.

    Args:
        model: PyTorch model to train
        train_loader: Training data loader
        val_loader: Validation data loader
        epochs: Number of training epochs
        lr: Adadelta learning rate
        device: Device to use ('cuda' or 'cpu')
        out_path: Path to save outputs (weights, metrics, predictions)
        config: Optional config dict for logging and persistence
                (model_name, variant, key, split_indices, batch_size, dropout, seed)

    Returns:
        Dict containing:
            - 'history': Training history with train/val losses and accuracies
            - 'best_val_acc': Best validation accuracy achieved
            - 'best_epoch': Epoch with best validation accuracy
            - 'model': Trained model (with best weights loaded)
    """
    device_obj = torch.device(device)
    model = model.to(device_obj)

    config = config or {}
    model_name = config.get('model_name', 'model')
    variant = config.get('variant', 'control')
    key: Optional[PermutationKey] = config.get('key')
    split_indices = config.get('split_indices')
    meta = config.get('meta', {})

    _log_configuration(model_name, variant, key, train_loader, val_loader, epochs, lr, device_obj)

    criterion = nn.CrossEntropyLoss()
    optimizer = optim.Adadelta(model.parameters(), lr=lr)
    logger.info(f"Optimizer: Adadelta (lr={lr})")
    logger.info(f"Criterion: CrossEntropyLoss\n")

    history = {"train_loss": [], "train_acc": [], "val_loss": [], "val_acc": []}
    best_val_acc, best_epoch = 0.0, -1
    best_state = None

    def train_one_epoch(model, loader):
        model.train()
        total_loss, correct, total = 0.0, 0, 0
        for images, labels in loader:
            images, labels = images.to(device_obj), labels.to(device_obj)
            optimizer.zero_grad()
            outputs = model(images)
            loss = criterion(outputs, labels)
            loss.backward()
            optimizer.step()
            total_loss += loss.item() * images.size(0)
            correct += (outputs.argmax(1) == labels).sum().item()
            total += labels.size(0)
        if total == 0:
            raise ValueError("train_loader produced no samples")
        return total_loss / total, correct / total

    logger.info(f"=== Starting Training ({variant}) ===")
    for epoch in range(epochs):
        train_loss, train_acc = train_one_epoch(model, train_loader)
        val_metrics = evaluate_model(model, val_loader, device=device, criterion=criterion)

        history["train_loss"].append(float(train_loss))
        history["train_acc"].append(float(train_acc))
        history["val_loss"].append(float(val_metrics['loss']))
        history["val_acc"].append(float(val_metrics['accuracy']))

        logger.info(f"Epoch {epoch+1}/{epochs}: "
                    f"Train Loss={train_loss:.4f}, Train Acc={train_acc:.4f}, "
                    f"Val Loss={val_metrics['loss']:.4f}, Val Acc={val_metrics['accuracy']:.4f}")

        if best_state is None or val_metrics['accuracy'] > best_val_acc:
            best_val_acc, best_epoch = val_metrics['accuracy'], epoch + 1
            best_state = {k: v.detach().clone() for k, v in model.state_dict().items()}

    if best_state is not None:
        model.load_state_dict(best_state)

    logger.info(f"\nBest Val Accuracy: {best_val_acc:.4f} at epoch {best_epoch}\n")

    if out_path:
        Path(out_path).mkdir(parents=True, exist_ok=True)
        notes = "Control, raw images" if key is None else "Obfuscated, shared row/column permutation"
        save_run(
            results_root=out_path,
            variant=variant,
            model_name=model_name,
            model=model,
            history=history,
            meta=meta,
            hyper={
                "epochs": epochs,
                "batch_size": train_loader.batch_size,
                "lr": lr,
                "optimizer": "Adadelta",
                "dropout": config.get('dropout'),
                "seed": config.get('seed'),
            },
            notes=notes,
            split_indices=split_indices,
            key=key.to_dict() if key is not None else None,
        )

        save_preds(
            results_root=out_path,
            split="val",
            model=model,
            loader=val_loader,
            device=str(device_obj),
        )

        logger.info(f"Saved outputs under: {out_path}")

    return {
        "history": history,
        "best_val_acc": best_val_acc,
        "best_epoch": best_epoch,
        "model": model
    }
