"""
End-to-end checks of the data, model and training utilities on synthetic MNIST-shaped data.

Run with: pytest test_run.py
"""
import pytest
import torch

from permuted_pixels.config import DEFAULT_CONFIG, make_config
from permuted_pixels.data import split_indices, create_loader
from permuted_pixels.models import build_model, get_model_config, REGISTRY
from permuted_pixels.models.mnist_cnn import MnistCNN
from permuted_pixels.obfuscation import generate_key, apply_transform
from permuted_pixels.train_utils import train_model, evaluate_model


def synthetic_mnist(n=48, seed=0):
    """Random 1x28x28 images in [0, 1] with labels 0-9"""
    g = torch.Generator().manual_seed(seed)
    images = torch.rand(n, 1, 28, 28, generator=g)
    labels = torch.randint(0, 10, (n,), generator=g)
    return images, labels


def test_split_indices_partition():
    g = torch.Generator().manual_seed(0)
    splits = split_indices(100, [0.6, 0.2, 0.2], generator=g)
    assert len(splits['train']) == 60
    assert len(splits['val']) == 20
    assert len(splits['test']) == 20
    all_idx = sorted(list(splits['train']) + list(splits['val']) + list(splits['test']))
    assert all_idx == list(range(100))


def test_split_indices_reproducible_and_validated():
    a = split_indices(50, [0.9, 0.1], generator=torch.Generator().manual_seed(3))
    b = split_indices(50, [0.9, 0.1], generator=torch.Generator().manual_seed(3))
    assert (a['train'] == b['train']).all()
    assert (a['val'] == b['val']).all()
    with pytest.raises(ValueError):
        split_indices(50, [0.5, 0.2])


def test_create_loader_adds_channel_axis_and_subsets():
    images = torch.rand(10, 28, 28)
    labels = torch.arange(10)
    loader = create_loader(images, labels, indices=[1, 3, 5], batch_size=2)
    batches = list(loader)
    assert len(loader.dataset) == 3
    assert batches[0][0].shape == (2, 1, 28, 28)
    assert batches[0][1].tolist() == [1, 3]


def test_model_registry_and_output_shape():
    assert "mnist_cnn" in REGISTRY
    model = build_model("mnist_cnn", num_classes=10)
    assert isinstance(model, MnistCNN)
    out = model(torch.rand(4, 1, 28, 28))
    assert out.shape == (4, 10)

    probs = model.predict_proba(torch.rand(3, 1, 28, 28))
    assert torch.allclose(probs.sum(dim=1), torch.ones(3), atol=1e-5)

    assert get_model_config("mnist_cnn")["input_shape"] == [1, 28, 28]
    with pytest.raises(ValueError):
        build_model("resnet18")
    with pytest.raises(ValueError):
        get_model_config("resnet18")


def test_model_accepts_obfuscated_input_unchanged():
    """The obfuscated data has exactly the shape the control model takes"""
    images, labels = synthetic_mnist(n=8)
    obf_images, _ = apply_transform(images, labels, generate_key(8, 28, 28, seed=0))
    model = build_model("mnist_cnn")
    assert model(obf_images).shape == model(images).shape


def test_make_config():
    config = make_config(epochs=1, batch_size=8)
    assert config['epochs'] == 1
    assert config['lr'] == DEFAULT_CONFIG['lr']
    assert DEFAULT_CONFIG['epochs'] == 12
    with pytest.raises(ValueError):
        make_config(learning_rate=0.1)
    with pytest.raises(ValueError):
        make_config(val_split=1.5)


def test_train_and_evaluate_one_epoch(tmp_path):
    images, labels = synthetic_mnist(n=48)
    torch.manual_seed(0)
    train_loader = create_loader(images[:32], labels[:32], batch_size=16, shuffle=True,
                                 generator=torch.Generator().manual_seed(0))
    val_loader = create_loader(images[32:], labels[32:], batch_size=16)
    model = build_model("mnist_cnn")

    results = train_model(
        model=model,
        train_loader=train_loader,
        val_loader=val_loader,
        epochs=2,
        lr=1.0,
        device="cpu",
        out_path=str(tmp_path / "control"),
        config={'model_name': 'mnist_cnn', 'variant': 'control', 'seed': 0},
    )

    history = results['history']
    assert len(history['train_loss']) == 2
    assert len(history['val_acc']) == 2
    assert 0.0 <= results['best_val_acc'] <= 1.0
    assert results['best_epoch'] in (1, 2)
    assert results['best_val_acc'] == max(history['val_acc'])

    metrics = evaluate_model(results['model'], val_loader, device="cpu")
    assert set(metrics) == {'loss', 'accuracy'}
    assert metrics['accuracy'] == pytest.approx(results['best_val_acc'])

    assert (tmp_path / "control" / "best.pth").exists()
    assert (tmp_path / "control" / "metrics.json").exists()
    assert (tmp_path / "control" / "preds_val.npz").exists()


def test_evaluate_empty_loader():
    loader = create_loader(torch.zeros(0, 1, 28, 28), torch.zeros(0, dtype=torch.long))
    metrics = evaluate_model(build_model("mnist_cnn"), loader)
    assert metrics == {'loss': 0.0, 'accuracy': 0.0}


if __name__ == "__main__":
    raise SystemExit(pytest.main([__file__, "-v"]))
