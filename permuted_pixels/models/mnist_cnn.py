import torch
import torch.nn as nn
import torch.nn.functional as F

MNIST_INPUT_SHAPE = (1, 28, 28)

class MnistCNN(nn.Module):
    """
    Two conv layers, one max-pool, dropout, one dense hidden layer and a
    linear output over the classes. Emits logits; softmax is folded into
    CrossEntropyLoss during training.
    """
    def __init__(self, num_classes: int = 10, dropout: float = 0.25, hidden_dropout: float = 0.5):
        super().__init__()
        # Input assumed 1x28x28
        self.features = nn.Sequential(
            nn.Conv2d(1, 32, 3), nn.ReLU(inplace=True),   # 26x26
            nn.Conv2d(32, 64, 3), nn.ReLU(inplace=True),  # 24x24
            nn.MaxPool2d(2),                              # 12x12
            nn.Dropout(p=dropout),
        )
        self.classifier = nn.Sequential(
            nn.Flatten(),
            nn.Linear(64 * 12 * 12, 128), nn.ReLU(inplace=True),
            nn.Dropout(p=hidden_dropout),
            nn.Linear(128, num_classes),
        )

    def forward(self, x):
        x = self.features(x)
        return self.classifier(x)

    @torch.no_grad()
    def predict_proba(self, x):
        return F.softmax(self.forward(x), dim=1)

def build(num_classes: int = 10, dropout: float = 0.25):
    """
    MNIST CNN trained from scratch.
    Returns (model, meta) so callers can log the expected input.
    """
    model = MnistCNN(num_classes=num_classes, dropout=dropout)
    meta = {"input_shape": list(MNIST_INPUT_SHAPE), "num_classes": num_classes}
    return model, meta
