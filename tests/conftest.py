from __future__ import annotations

import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest


ROOT = Path(__file__).resolve().parents[1]
ROOT_STR = str(ROOT)
if ROOT_STR not in sys.path:
    sys.path.insert(0, ROOT_STR)


def make_frame(closes, start: str = "2024-01-01", freq: str = "1h") -> pd.DataFrame:
    closes = np.asarray(closes, dtype=float)
    opens = np.concatenate([[closes[0]], closes[:-1]])
    return pd.DataFrame(
        {
            "timestamp": pd.date_range(start, periods=len(closes), freq=freq),
            "open": opens,
            "high": np.maximum(opens, closes) * 1.002,
            "low": np.minimum(opens, closes) * 0.998,
            "close": closes,
            "volume": np.full(len(closes), 1000.0),
        }
    )


@pytest.fixture
def flat_prices() -> pd.DataFrame:
    return make_frame(np.full(50, 100.0))


@pytest.fixture
def oscillating_prices() -> pd.DataFrame:
    bars = np.arange(400)
    closes = 100 + 10 * np.sin(bars / 8.0) + 0.5 * np.sin(bars / 1.7)
    return make_frame(closes)


@pytest.fixture
def trending_prices() -> pd.DataFrame:
    bars = np.arange(300)
    closes = 100 * (1.002 ** bars) + 2 * np.sin(bars / 5.0)
    return make_frame(closes)
