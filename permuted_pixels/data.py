import math
from typing import Dict, List, Optional, Tuple

import numpy as np
import torch
from torch.utils.data import DataLoader, Subset, TensorDataset
from torchvision import datasets, transforms


MNIST_IMAGE_SHAPE = (1, 28, 28)
MNIST_NUM_CLASSES = 10


def mnist_dataset(root: str = "./data", train: bool = True, download: bool = True):
    """
    torchvision MNIST yielding (float tensor (1, 28, 28) in [0, 1], int label).

    Suitable as the base of an ObfuscatedDataset when the data should not be
    materialized in memory.
    """
    return datasets.MNIST(root, train=train, download=download, transform=transforms.ToTensor())


def load_mnist(
    root: str = "./data",
    train: bool = True,
    download: bool = True
) -> Tuple[torch.Tensor, torch.Tensor]:
    """
    Load an MNIST split as two parallel tensors.

    Args:
        root: Directory torchvision downloads MNIST into
        train: Load the 60k training split if True, else the 10k test split
        download: Download if not already present under root

    Returns:
        (images, labels): float32 images of shape (N, 1, 28, 28) scaled to
        [0, 1], and int64 labels of shape (N,)
    """
    ds = datasets.MNIST(root, train=train, download=download)
    images = ds.data.unsqueeze(1).to(torch.float32).div_(255.0)
    labels = ds.targets.to(torch.long)
    return images, labels


def split_indices(
    n_samples: int,
    splits: List[float],
    generator: Optional[torch.Generator] = None
) -> Dict[str, np.ndarray]:
    """
    Split dataset indices into multiple sets (e.g., train/val/test).

    Args:
        n_samples: Total number of samples
        splits: List of split ratios (must sum to 1.0), e.g., [0.9, 0.1]
        generator: Optional torch.Generator for a reproducible shuffle

    Returns:
        Dict mapping split names to index arrays, e.g.,
        {'train': array([...]), 'val': array([...])}

    Note:
        The generated split indices are saved in metrics.json, so a run can be
        reproduced without the generator.
    """
    if not math.isclose(sum(splits), 1.0, rel_tol=1e-5):
        raise ValueError(f"Splits must sum to 1.0, got {sum(splits)}")
    if len(splits) > 3:
        raise ValueError(f"At most 3 splits (train/val/test) are supported, got {len(splits)}")

    indices = torch.randperm(n_samples, generator=generator).numpy()

    split_names = ['train', 'val', 'test'][:len(splits)]
    result = {}
    start = 0

    for i, (name, ratio) in enumerate(zip(split_names, splits)):
        if i == len(splits) - 1:
            # Last split gets all remaining samples
            result[name] = indices[start:]
        else:
            count = int(n_samples * ratio)
            result[name] = indices[start:start + count]
            start += count

    return result


def create_loader(
    images: torch.Tensor,
    labels: torch.Tensor,
    indices: Optional[np.ndarray] = None,
    batch_size: int = 128,
    shuffle: bool = False,
    generator: Optional[torch.Generator] = None,
    num_workers: int = 0
) -> DataLoader:
    """
    Create DataLoader over in-memory image/label tensors.

    Args:
        images: Tensor of shape (N, 1, H, W); (N, H, W) gets a channel axis added
        labels: Tensor of shape (N,)
        indices: Optional subset of sample indices to include
        batch_size: Batch size
        shuffle: Whether to shuffle data each epoch
        generator: Optional generator driving the shuffle order
        num_workers: Number of worker processes

    Returns:
        DataLoader yielding (images, labels) batches
    """
    if images.dim() == 3:
        images = images.unsqueeze(1)

    dataset = TensorDataset(images, labels)
    if indices is not None:
        dataset = Subset(dataset, np.asarray(indices).tolist())

    return DataLoader(
        dataset,
        batch_size=batch_size,
        shuffle=shuffle,
        generator=generator,
        num_workers=num_workers
    )
