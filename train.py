"""
Train the MNIST CNN on raw and on obfuscated images and compare them.

Run with: python train.py --epochs 12 --seed 0 --results-root results/mnist
"""

from pathlib import Path

from permuted_pixels.config import DEFAULT_CONFIG, make_config
from permuted_pixels.experiments import run_comparison, print_experiment_summary
from permuted_pixels.manifest import build_manifest
from permuted_pixels.summary import plot_histories


def main(argv=None):
    import argparse

    parser = argparse.ArgumentParser(
        description="MNIST control vs shared-permutation obfuscation",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument("--seed", type=int, default=DEFAULT_CONFIG["seed"], help="Seed for the permutation key, split and model init")
    parser.add_argument("--epochs", type=int, default=DEFAULT_CONFIG["epochs"], help="Training epochs per run")
    parser.add_argument("--batch-size", type=int, default=DEFAULT_CONFIG["batch_size"], help="Mini-batch size")
    parser.add_argument("--lr", type=float, default=DEFAULT_CONFIG["lr"], help="Adadelta learning rate")
    parser.add_argument("--val-split", type=float, default=DEFAULT_CONFIG["val_split"], help="Fraction of training data held out for validation")
    parser.add_argument("--dropout", type=float, default=DEFAULT_CONFIG["dropout"], help="Dropout after the pooling layer")

    parser.add_argument("--data-root", type=str, default="./data", help="MNIST download directory")
    parser.add_argument("--results-root", type=str, default=None, help="Directory to store weights, metrics and plots")
    parser.add_argument("--device", type=str, default=None, help="'cuda' or 'cpu' (default: cuda if available)")
    parser.add_argument("--plot", action="store_true", help="Show accuracy/loss curves at the end")

    args = parser.parse_args(argv)

    config = make_config(
        seed=args.seed,
        epochs=args.epochs,
        batch_size=args.batch_size,
        lr=args.lr,
        val_split=args.val_split,
        dropout=args.dropout,
    )
    results_root = Path(args.results_root) if args.results_root else None

    results = run_comparison(
        config=config,
        data_root=args.data_root,
        results_root=results_root,
        device=args.device,
    )
    print_experiment_summary(results)

    if results_root is not None:
        print(f"Manifest: {build_manifest(str(results_root))}")
        plot_histories(
            {r['variant']: r['history'] for r in results},
            show=args.plot,
            save_path=str(results_root / "curves.png"),
        )
    elif args.plot:
        plot_histories({r['variant']: r['history'] for r in results})

    return results


if __name__ == "__main__":
    main()
