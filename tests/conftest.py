"""
Shared pytest configuration and fixtures for formulanet tests.

This module provides common test fixtures, a scripted training engine and
configuration used across the test suite.
"""

import pytest
import numpy as np
import pandas as pd
from typing import Any, Dict, List, Optional

from formulanet.config.settings import set_default_config
from formulanet.formulas import FormulaCompiler
from formulanet.optimization.engine import TrainingEngine


@pytest.fixture(autouse=True)
def reset_default_config():
    """Each test starts from a freshly built default configuration."""
    set_default_config(None)
    yield
    set_default_config(None)


@pytest.fixture(autouse=True)
def set_random_seed():
    """Set random seed for reproducible tests."""
    np.random.seed(42)


@pytest.fixture
def compiler():
    return FormulaCompiler()


@pytest.fixture
def tweets_frame():
    """Small synthetic tweet-like record set."""
    rng = np.random.default_rng(0)
    n = 40
    sources = np.array(["Twitter for iPhone", "Twitter Web App", "TweetDeck"])
    tags = ["data", "python", "jax", "stats"]

    return pd.DataFrame({
        "retweet_count": rng.poisson(3, n),
        "followers": rng.integers(10, 5000, n),
        "source": sources[np.arange(n) % 3],
        "hashtags": [list(tags[: i % 4]) for i in range(n)],
        "text": [f"post {i} http://x.co" if i % 2 else f"post {i}" for i in range(n)],
        "created_at": pd.date_range("2024-01-01", periods=n, freq="7h"),
    })


@pytest.fixture
def scenario_frame():
    """100 records: x1 numeric, x2 categorical with 3 levels, y spanning three cut buckets."""
    rng = np.random.default_rng(1)
    n = 100
    buckets = np.array([-0.5, 0.5, 5.0])
    return pd.DataFrame({
        "y": buckets[np.arange(n) % 3] + rng.uniform(-0.4, 0.4, n),
        "x1": rng.normal(size=n),
        "x2": np.array(["a", "b", "c"])[rng.permutation(np.arange(n) % 3)],
    })


@pytest.fixture
def binary_frame():
    """Linearly separable binary outcome."""
    rng = np.random.default_rng(2)
    n = 200
    x1 = rng.normal(size=n)
    x2 = rng.normal(size=n)
    return pd.DataFrame({
        "label": (x1 + 0.5 * x2 > 0).astype(int),
        "x1": x1,
        "x2": x2,
        "group": np.array(["g1", "g2"])[np.arange(n) % 2],
    })


class FakeModel:
    """Stand-in model with declared input and output widths."""

    def __init__(self, input_width: int, output_units: int):
        self.input_width = input_width
        self.output_units = output_units
        self.fitted = False


class FakeEngine(TrainingEngine):
    """
    Scripted engine recording every call.

    Predicts a constant output row; optionally raises from a chosen stage.
    """

    name = "fake"

    def __init__(self, output_value: float = 0.75, fail_on: Optional[str] = None, error=None):
        self.output_value = output_value
        self.fail_on = fail_on
        self.error = error or RuntimeError("engine exploded")
        self.calls: List[str] = []
        self.fit_args: Dict[str, Any] = {}

    def _maybe_fail(self, stage: str):
        self.calls.append(stage)
        if self.fail_on == stage:
            raise self.error

    def build(self, architecture, seed=None):
        self._maybe_fail("build")
        return FakeModel(architecture.input_width, architecture.output_units)

    def fit(self, model, X, y, X_val, y_val, hyperparameters):
        self._maybe_fail("fit")
        self.fit_args = {"X": X, "y": y, "X_val": X_val, "y_val": y_val}
        model.fitted = True
        epochs = hyperparameters.epochs
        return {
            "loss": [1.0 / (i + 1) for i in range(epochs)],
            "val_loss": [1.2 / (i + 1) for i in range(epochs)],
        }

    def predict(self, model, X):
        self._maybe_fail("predict")
        return np.full((len(X), model.output_units), self.output_value, dtype=np.float32)


@pytest.fixture
def fake_engine():
    return FakeEngine()


@pytest.fixture
def engine_factory():
    """FakeEngine class, for tests that need a configured instance."""
    return FakeEngine


@pytest.fixture
def model_factory():
    return FakeModel


# Markers for different test types
def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test (fast)"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test (medium speed)"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow (may take >10 seconds)"
    )
