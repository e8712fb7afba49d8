"""
Shared-permutation obfuscation of single-channel image datasets.

A PermutationKey holds three bijections: one over sample indices, one over
row indices and one over column indices. Applying the key reorders the
samples and moves every image's rows and columns with the SAME spatial
permutation, so pixel values are only readdressed, never altered. Only the
holder of the key can undo the transform.
"""

import json
import logging
import warnings
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

import torch
from torch.utils.data import Dataset

from .utils_io import _atomic_write_json

logger = logging.getLogger(__name__)

PermutationLike = Union[torch.Tensor, Sequence[int]]


class DimensionMismatchError(ValueError):
    """Raised when a PermutationKey does not fit the dataset it is applied to."""


class NonDeterministicKeyWarning(UserWarning):
    """Issued when a key is generated without a seed or an explicit generator."""


def _as_permutation(values: PermutationLike, name: str) -> torch.Tensor:
    perm = torch.as_tensor(values)
    # as_tensor([]) is float32, so only non-empty input is dtype-checked
    if perm.numel() and (torch.is_floating_point(perm) or perm.dtype == torch.bool):
        raise ValueError(f"{name} must hold integer indices, got dtype {perm.dtype}")
    perm = perm.to(torch.long).clone()
    if perm.dim() != 1:
        raise ValueError(f"{name} must be 1-D, got shape {tuple(perm.shape)}")
    n = perm.numel()
    if n and not torch.equal(torch.sort(perm).values, torch.arange(n)):
        raise ValueError(f"{name} is not a permutation of range({n})")
    return perm


def invert_permutation(perm: torch.Tensor) -> torch.Tensor:
    """Return inv such that inv[perm[i]] == i."""
    inv = torch.empty_like(perm)
    inv[perm] = torch.arange(perm.numel(), dtype=perm.dtype)
    return inv


class PermutationKey:
    """
    Immutable triple of index bijections defining one obfuscation.

    Args:
        sample_permutation: Bijection over sample indices (length = dataset size)
        row_permutation: Bijection over row indices (length = image height)
        column_permutation: Bijection over column indices (length = image width)
        seed: Seed the key was generated from, or None
        deterministic: Whether the key can be regenerated (defaults to seed is not None)

    Raises:
        ValueError: If any of the three inputs is not a 1-D permutation.
    """

    __slots__ = ("_sample", "_row", "_column", "_seed", "_deterministic")

    def __init__(
        self,
        sample_permutation: PermutationLike,
        row_permutation: PermutationLike,
        column_permutation: PermutationLike,
        seed: Optional[int] = None,
        deterministic: Optional[bool] = None,
    ):
        self._sample = _as_permutation(sample_permutation, "sample_permutation")
        self._row = _as_permutation(row_permutation, "row_permutation")
        self._column = _as_permutation(column_permutation, "column_permutation")
        if self._row.numel() == 0 or self._column.numel() == 0:
            raise ValueError("row_permutation and column_permutation must be non-empty")
        self._seed = seed
        self._deterministic = seed is not None if deterministic is None else bool(deterministic)

    # Tensors are cloned on the way out so callers cannot mutate the key.
    @property
    def sample_permutation(self) -> torch.Tensor:
        return self._sample.clone()

    @property
    def row_permutation(self) -> torch.Tensor:
        return self._row.clone()

    @property
    def column_permutation(self) -> torch.Tensor:
        return self._column.clone()

    @property
    def seed(self) -> Optional[int]:
        return self._seed

    @property
    def is_deterministic(self) -> bool:
        return self._deterministic

    @property
    def dataset_size(self) -> int:
        return self._sample.numel()

    @property
    def image_shape(self) -> Tuple[int, int]:
        return self._row.numel(), self._column.numel()

    def inverse(self) -> "PermutationKey":
        """Key whose three permutations undo this key's permutations."""
        return PermutationKey(
            invert_permutation(self._sample),
            invert_permutation(self._row),
            invert_permutation(self._column),
            seed=self._seed,
            deterministic=self._deterministic,
        )

    def to_dict(self) -> Dict:
        return {
            "seed": self._seed,
            "deterministic": self._deterministic,
            "sample_permutation": self._sample.tolist(),
            "row_permutation": self._row.tolist(),
            "column_permutation": self._column.tolist(),
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "PermutationKey":
        return cls(
            data["sample_permutation"],
            data["row_permutation"],
            data["column_permutation"],
            seed=data.get("seed"),
            deterministic=data.get("deterministic"),
        )

    def __eq__(self, other):
        if not isinstance(other, PermutationKey):
            return NotImplemented
        return (
            torch.equal(self._sample, other._sample)
            and torch.equal(self._row, other._row)
            and torch.equal(self._column, other._column)
        )

    def __hash__(self):
        return hash((tuple(self._sample.tolist()), tuple(self._row.tolist()), tuple(self._column.tolist())))

    def __repr__(self):
        h, w = self.image_shape
        return f"PermutationKey(dataset_size={self.dataset_size}, image_shape=({h}, {w}), seed={self._seed})"


def generate_key(
    dataset_size: int,
    image_height: int,
    image_width: int,
    seed: Optional[int] = None,
    generator: Optional[torch.Generator] = None,
) -> PermutationKey:
    """
    Generate a random PermutationKey.

    The row permutation is drawn first, then the column permutation, then the
    sample permutation. Keys generated from the same seed therefore share
    their spatial permutation even when dataset_size differs, which is how a
    train split and a test split get the same row/column scrambling.

    Args:
        dataset_size: Number of samples (0 allowed)
        image_height: Image height in pixels (positive)
        image_width: Image width in pixels (positive)
        seed: Seed for a fresh torch.Generator
        generator: Explicit generator to draw from (mutually exclusive with seed)

    Returns:
        PermutationKey

    Raises:
        ValueError: On non-integer or out-of-range sizes, or if both seed and
            generator are given.

    Warns:
        NonDeterministicKeyWarning: If neither seed nor generator is given.
    """
    for name, value, minimum in (
        ("dataset_size", dataset_size, 0),
        ("image_height", image_height, 1),
        ("image_width", image_width, 1),
    ):
        if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
            raise ValueError(f"{name} must be an integer >= {minimum}, got {value!r}")

    if seed is not None and generator is not None:
        raise ValueError("pass either seed or generator, not both; the stored seed would not reproduce the key")

    deterministic = generator is not None or seed is not None
    if generator is None:
        generator = torch.Generator()
        if seed is None:
            warnings.warn(
                "generate_key called without seed or generator; the permutation key "
                "cannot be reproduced",
                NonDeterministicKeyWarning,
                stacklevel=2,
            )
            generator.seed()
        else:
            generator.manual_seed(seed)

    row = torch.randperm(image_height, generator=generator)
    column = torch.randperm(image_width, generator=generator)
    sample = torch.randperm(dataset_size, generator=generator)

    key = PermutationKey(sample, row, column, seed=seed, deterministic=deterministic)
    logger.debug("Generated %r", key)
    return key


def permute_image_tensor(
    image_tensor: torch.Tensor,
    row_permutation: PermutationLike,
    column_permutation: PermutationLike,
) -> torch.Tensor:
    """
    Reorder the rows and columns of an image (or a batch of images).

    Args:
        image_tensor: Tensor whose last two axes are (H, W), e.g. (H, W),
                      (C, H, W) or (N, C, H, W)
        row_permutation: out[..., r, :] = image[..., row_permutation[r], :]
        column_permutation: out[..., :, c] = image[..., :, column_permutation[c]]

    Returns:
        Tensor with the same shape, dtype and device as the input
    """
    rows = torch.as_tensor(row_permutation, dtype=torch.long, device=image_tensor.device)
    cols = torch.as_tensor(column_permutation, dtype=torch.long, device=image_tensor.device)
    return image_tensor.index_select(-2, rows).index_select(-1, cols)


def _check_dimensions(images: torch.Tensor, labels: torch.Tensor, key: PermutationKey) -> None:
    if images.dim() not in (3, 4):
        raise DimensionMismatchError(
            f"images must have shape (N, H, W) or (N, C, H, W), got {tuple(images.shape)}"
        )
    if images.dim() == 4 and images.shape[1] != 1:
        raise DimensionMismatchError(f"images must be single-channel, got {images.shape[1]} channels")
    if labels.shape[0] != images.shape[0]:
        raise DimensionMismatchError(
            f"got {images.shape[0]} images but {labels.shape[0]} labels"
        )
    if images.shape[0] != key.dataset_size:
        raise DimensionMismatchError(
            f"key covers {key.dataset_size} samples, dataset has {images.shape[0]}"
        )
    if tuple(images.shape[-2:]) != key.image_shape:
        raise DimensionMismatchError(
            f"key image shape {key.image_shape} does not match images {tuple(images.shape[-2:])}"
        )


def apply_transform(
    images: torch.Tensor,
    labels: torch.Tensor,
    key: PermutationKey,
) -> Tuple[torch.Tensor, torch.Tensor]:
    """
    Obfuscate a dataset with a PermutationKey.

    out_images[i, ..., r, c] == images[s[i], ..., row[r], col[c]] and
    out_labels[i] == labels[s[i]] where s, row, col are the key's sample,
    row and column permutations.

    Args:
        images: Tensor of shape (N, H, W) or (N, 1, H, W)
        labels: Tensor of shape (N,)
        key: PermutationKey matching N, H and W

    Returns:
        Tuple (obfuscated_images, obfuscated_labels)

    Raises:
        DimensionMismatchError: If the key does not fit the dataset.
    """
    images, labels = torch.as_tensor(images), torch.as_tensor(labels)
    _check_dimensions(images, labels, key)

    sample = key.sample_permutation
    out_images = images.index_select(0, sample.to(images.device))
    out_images = permute_image_tensor(out_images, key.row_permutation, key.column_permutation)
    out_labels = labels.index_select(0, sample.to(labels.device))
    return out_images, out_labels


def invert_transform(
    images: torch.Tensor,
    labels: torch.Tensor,
    key: PermutationKey,
) -> Tuple[torch.Tensor, torch.Tensor]:
    """
    Recover the original dataset from an obfuscated one.

    Undoes the row/column permutation of every image, then the sample
    ordering. invert_transform(*apply_transform(x, y, key), key) == (x, y).

    Raises:
        DimensionMismatchError: If the key does not fit the dataset.
    """
    images, labels = torch.as_tensor(images), torch.as_tensor(labels)
    _check_dimensions(images, labels, key)

    inverse = key.inverse()
    out_images = permute_image_tensor(images, inverse.row_permutation, inverse.column_permutation)
    sample = inverse.sample_permutation
    out_images = out_images.index_select(0, sample.to(images.device))
    out_labels = labels.index_select(0, sample.to(labels.device))
    return out_images, out_labels


class ObfuscatedDataset(Dataset):
    """
    Dataset wrapper that serves a base dataset through a PermutationKey.

    Item i is base item key.sample_permutation[i] with the key's shared
    row/column permutation applied to the last two axes of its image.
    Equivalent to apply_transform, but lazy, so it works on top of
    torchvision datasets with a ToTensor() transform.

    Args:
        base_dataset (Dataset): Dataset yielding (image_tensor, label)
        key (PermutationKey): Key whose dataset_size equals len(base_dataset)

    Returns:
        (Tensor, int): Obfuscated image tensor and its label
    """
    def __init__(self, base_dataset, key: PermutationKey):
        if key is None:
            raise ValueError("key is required for ObfuscatedDataset")
        if len(base_dataset) != key.dataset_size:
            raise DimensionMismatchError(
                f"key covers {key.dataset_size} samples, dataset has {len(base_dataset)}"
            )
        self.base_dataset = base_dataset
        self.key = key
        self._sample = key.sample_permutation
        self._row = key.row_permutation
        self._column = key.column_permutation

    def __len__(self):
        return len(self.base_dataset)

    def __getitem__(self, idx):
        image, label = self.base_dataset[int(self._sample[idx])]
        if tuple(image.shape[-2:]) != self.key.image_shape:
            raise DimensionMismatchError(
                f"key image shape {self.key.image_shape} does not match image {tuple(image.shape[-2:])}"
            )
        return permute_image_tensor(image, self._row, self._column), label


def save_key(key: PermutationKey, path: Union[str, Path]) -> str:
    """Write key to a JSON file and return the path."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    _atomic_write_json(path, key.to_dict())
    return str(path)


def load_key(path: Union[str, Path]) -> PermutationKey:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Key file not found: {path}")
    with open(path, "r") as f:
        return PermutationKey.from_dict(json.load(f))


def key_summary(key: PermutationKey) -> List[str]:
    """Short human-readable lines describing a key, used in training logs."""
    h, w = key.image_shape
    return [
        f"Samples:             {key.dataset_size}",
        f"Image Shape:         {h}x{w}",
        f"Seed:                {key.seed if key.is_deterministic else 'non-reproducible'}",
        f"Row Permutation:     {key.row_permutation.tolist()}",
        f"Column Permutation:  {key.column_permutation.tolist()}",
    ]
