"""
Experiment orchestration for the control vs obfuscated comparison.

The same model registry entry and the same hyperparameters are used for
both runs; the only difference is whether the images went through a
PermutationKey first.
"""

import warnings
from pathlib import Path
from typing import Dict, List, Any, Optional, Tuple

import torch

from .config import make_config
from .data import load_mnist, split_indices, create_loader
from .models import build_model, get_model_config
from .obfuscation import PermutationKey, NonDeterministicKeyWarning, generate_key, apply_transform
from .train_utils import train_model, evaluate_model
from .utils_io import save_preds, update_metrics

Tensors = Tuple[torch.Tensor, torch.Tensor]

VARIANTS = ("control", "obfuscated")


def _make_generator(seed: Optional[int]) -> torch.Generator:
    """Generator seeded with seed, or from fresh entropy (with a warning) if seed is None."""
    generator = torch.Generator()
    if seed is None:
        warnings.warn(
            "no seed configured; the permutation key, split and shuffle order cannot be reproduced",
            NonDeterministicKeyWarning,
            stacklevel=3,
        )
        generator.seed()
    else:
        generator.manual_seed(seed)
    return generator


def make_keys(
    train_size: int,
    test_size: int,
    image_shape: Tuple[int, int],
    seed: Optional[int]
) -> Tuple[PermutationKey, PermutationKey]:
    """
    Keys for the train and test splits that share one spatial permutation.

    With a seed, both keys come from it, and generate_key draws the row and
    column permutations before the sample permutation, so only the sample
    orderings differ. Without one, the train key is drawn from fresh entropy
    (NonDeterministicKeyWarning) and the test key reuses its row and column
    permutations with a sample permutation from the same generator.
    """
    h, w = image_shape
    if seed is None:
        generator = _make_generator(None)
        train_key = generate_key(train_size, h, w, generator=generator)
        train_key = PermutationKey(train_key.sample_permutation, train_key.row_permutation,
                                   train_key.column_permutation, deterministic=False)
        test_key = PermutationKey(torch.randperm(test_size, generator=generator),
                                  train_key.row_permutation, train_key.column_permutation,
                                  deterministic=False)
        return train_key, test_key

    train_key = generate_key(train_size, h, w, seed=seed)
    test_key = generate_key(test_size, h, w, seed=seed)
    if not (torch.equal(train_key.row_permutation, test_key.row_permutation)
            and torch.equal(train_key.column_permutation, test_key.column_permutation)):
        raise RuntimeError("train and test keys do not share their spatial permutation")
    return train_key, test_key


def run_single_experiment(
    variant: str,
    train_data: Tensors,
    test_data: Tensors,
    config: Dict[str, Any],
    key: Optional[PermutationKey] = None,
    test_key: Optional[PermutationKey] = None,
    results_root: Optional[Path] = None,
    device: str = "cpu"
) -> Dict[str, Any]:
    """
    Run a single training experiment with train/val/test evaluation.

    1. Splits train_data into train/val using config['val_split']
    2. Builds config['model_name'] from the registry
    3. Trains on train/val, restores the best epoch
    4. Evaluates on test_data
    5. Saves outputs under results_root/variant/ if results_root is given

    Args:
        variant: 'control' or 'obfuscated' (used for logging and output path)
        train_data: (images, labels) used for training and validation
        test_data: (images, labels) held out for the final evaluation
        config: Dict from make_config()
        key: Train split key, recorded in metrics.json for obfuscated runs.
             The data passed in must already be transformed with it.
        test_key: Test split key, stored as permutation_key_test; preds_test.npz
                  is in its sample order
        results_root: Root directory for saving results
        device: Device to train on ('cuda' or 'cpu')

    Returns:
        Dict with: variant, model, best_val_acc, best_epoch, test_acc,
        test_loss, history

    Raises:
        Exception: If training fails (propagated to caller)
    """
    model_name = config['model_name']
    print(f"\n{'='*80}")
    print(f"EXPERIMENT: {model_name} | {variant}")
    print(f"{'='*80}")

    out_path = None
    if results_root is not None:
        out_path = Path(results_root) / variant
        out_path.mkdir(parents=True, exist_ok=True)
        print(f"Output: {out_path}")

    images, labels = train_data
    test_images, test_labels = test_data

    # Same seed => same train/val split for both variants
    split_gen = _make_generator(config["seed"])
    splits = split_indices(len(images), splits=[1.0 - config['val_split'], config['val_split']],
                           generator=split_gen)
    print(f"Split: {len(splits['train'])} train, {len(splits['val'])} val, {len(test_images)} test")

    loader_gen = _make_generator(config["seed"])
    train_loader = create_loader(images, labels, splits['train'],
                                 batch_size=config['batch_size'], shuffle=True, generator=loader_gen)
    val_loader = create_loader(images, labels, splits['val'], batch_size=config['batch_size'])
    test_loader = create_loader(test_images, test_labels, batch_size=config['batch_size'])

    # Weight init draws from the default generator; seed it without leaking the state
    with torch.random.fork_rng(devices=[]):
        if config["seed"] is not None:
            torch.manual_seed(config["seed"])
        model = build_model(model_name, num_classes=config['num_classes'], dropout=config['dropout'])

    train_results = train_model(
        model=model,
        train_loader=train_loader,
        val_loader=val_loader,
        epochs=config['epochs'],
        lr=config['lr'],
        device=device,
        out_path=str(out_path) if out_path else None,
        config={
            'model_name': model_name,
            'variant': variant,
            'key': key,
            'meta': get_model_config(model_name),
            'split_indices': splits,
            'dropout': config['dropout'],
            'seed': config['seed'],
        }
    )

    print(f"\n--- Evaluating on test set ---")
    test_metrics = evaluate_model(train_results['model'], test_loader, device=device)
    print(f"Test Loss: {test_metrics['loss']:.4f}, Test Acc: {test_metrics['accuracy']:.4f}")

    if out_path is not None:
        save_preds(
            results_root=str(out_path),
            split="test",
            model=train_results['model'],
            loader=test_loader,
            device=device
        )
        update_metrics(
            str(out_path),
            test_accuracy=float(test_metrics['accuracy']),
            test_loss=float(test_metrics['loss']),
        )
        if test_key is not None:
            update_metrics(str(out_path), permutation_key_test=test_key.to_dict())

    print(f"\nCompleted: {model_name} | {variant}")
    print(f"  Best Val Acc: {train_results['best_val_acc']:.4f} @ epoch {train_results['best_epoch']}")
    print(f"  Test Acc:     {test_metrics['accuracy']:.4f}")

    return {
        'variant': variant,
        'model': model_name,
        'best_val_acc': train_results['best_val_acc'],
        'best_epoch': train_results['best_epoch'],
        'test_acc': test_metrics['accuracy'],
        'test_loss': test_metrics['loss'],
        'history': train_results['history'],
    }


def run_comparison(
    config: Optional[Dict[str, Any]] = None,
    data_root: str = "./data",
    train_data: Optional[Tensors] = None,
    test_data: Optional[Tensors] = None,
    results_root: Optional[Path] = None,
    device: Optional[str] = None
) -> List[Dict[str, Any]]:
    """
    Train the same model on raw and on obfuscated data and report both.

    Args:
        config: Dict from make_config(); defaults to DEFAULT_CONFIG
        data_root: Where to load MNIST from when train_data/test_data are None
        train_data: Optional preloaded (images, labels) training tensors
        test_data: Optional preloaded (images, labels) test tensors
        results_root: Root directory for saving results (None = don't save)
        device: 'cuda' or 'cpu' (default: cuda if available)

    Returns:
        [control_result, obfuscated_result], see run_single_experiment
    """
    config = config or make_config()
    if device is None:
        device = "cuda" if torch.cuda.is_available() else "cpu"

    if train_data is None:
        train_data = load_mnist(data_root, train=True)
    if test_data is None:
        test_data = load_mnist(data_root, train=False)

    images, labels = train_data
    test_images, test_labels = test_data
    image_shape = tuple(images.shape[-2:])

    train_key, test_key = make_keys(len(images), len(test_images), image_shape, config['seed'])
    print(f"Row permutation:    {train_key.row_permutation.tolist()}")
    print(f"Column permutation: {train_key.column_permutation.tolist()}")

    obf_train = apply_transform(images, labels, train_key)
    obf_test = apply_transform(test_images, test_labels, test_key)

    results = [
        run_single_experiment("control", train_data, test_data, config,
                              results_root=results_root, device=device),
        run_single_experiment("obfuscated", obf_train, obf_test, config,
                              key=train_key, test_key=test_key,
                              results_root=results_root, device=device),
    ]
    return results


def print_experiment_summary(results: List[Dict[str, Any]]) -> None:
    """
    Print formatted summary table of experiment results.

    Displays variant, validation accuracy, test accuracy and the
    generalization gap (val - test).
    """
    if not results:
        print("\nNo results to display.")
        return

    print("\n" + "="*80)
    print("EXPERIMENT SUMMARY")
    print("="*80)
    print(f"{'Model':<12} | {'Variant':<10} | {'Best Val Acc':<12} | {'Test Acc':<10} | {'Gap':<8}")
    print("-" * 80)
    for result in results:
        gap = result['best_val_acc'] - result['test_acc']
        print(f"{result['model']:<12} | {result['variant']:<10} | "
              f"{result['best_val_acc']:.4f}       | {result['test_acc']:.4f}     | {gap:+.4f}")
    print("="*80)

    by_variant = {r['variant']: r for r in results}
    if set(VARIANTS) <= set(by_variant):
        delta = by_variant['obfuscated']['test_acc'] - by_variant['control']['test_acc']
        print(f"Obfuscated - control test accuracy: {delta:+.4f}")
