from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from data_utils import filter_by_period, load_price_data, validate_dataset_size, validate_price_data
from dca_optimizer.errors import DataError

from conftest import make_frame


def _write_csv(tmp_path, frame: pd.DataFrame, name: str = "BTCUSDT-1h.csv"):
    path = tmp_path / name
    frame.to_csv(path, index=False)
    return path


def test_load_iso_timestamps_sorted_and_deduplicated(tmp_path) -> None:
    frame = make_frame(np.linspace(100, 110, 6))
    shuffled = pd.concat([frame.iloc[[3, 0, 5, 1]], frame.iloc[[2, 4, 4]]])
    path = _write_csv(tmp_path, shuffled)

    loaded = load_price_data(path)

    assert len(loaded) == 6
    assert loaded["timestamp"].is_monotonic_increasing
    assert list(loaded.columns) == ["timestamp", "open", "high", "low", "close", "volume"]


def test_load_epoch_milliseconds(tmp_path) -> None:
    frame = make_frame(np.full(4, 100.0))
    frame["timestamp"] = frame["timestamp"].astype("int64") // 10**6
    path = _write_csv(tmp_path, frame)

    loaded = load_price_data(path)

    assert loaded["timestamp"].iloc[0] == pd.Timestamp("2024-01-01 00:00:00")
    assert loaded["timestamp"].iloc[-1] == pd.Timestamp("2024-01-01 03:00:00")


def test_load_with_date_range(tmp_path) -> None:
    path = _write_csv(tmp_path, make_frame(np.full(48, 100.0)))

    loaded = load_price_data(path, start="2024-01-01 12:00", end="2024-01-01 17:00")

    assert len(loaded) == 6


def test_missing_file_is_data_error(tmp_path) -> None:
    with pytest.raises(DataError, match="not found"):
        load_price_data(tmp_path / "missing.csv")


def test_missing_column_is_data_error(tmp_path) -> None:
    path = _write_csv(tmp_path, make_frame(np.full(4, 100.0)).drop(columns=["volume"]))

    with pytest.raises(DataError, match="volume"):
        load_price_data(path)


def test_empty_range_is_data_error(tmp_path) -> None:
    path = _write_csv(tmp_path, make_frame(np.full(4, 100.0)))

    with pytest.raises(DataError):
        load_price_data(path, start="2030-01-01")


def test_validate_price_data() -> None:
    frame = make_frame(np.full(5, 100.0))

    assert validate_price_data(frame)
    with pytest.raises(DataError):
        validate_price_data(frame.iloc[:0])
    with pytest.raises(DataError):
        validate_price_data(None)
    with pytest.raises(DataError, match="increasing"):
        validate_price_data(frame.iloc[::-1])

    broken = frame.copy()
    broken.loc[2, "close"] = 0.0
    with pytest.raises(DataError, match="non-positive"):
        validate_price_data(broken)


def test_validate_dataset_size_only_warns() -> None:
    assert not validate_dataset_size(make_frame(np.full(10, 100.0)), symbol="TEST")
    assert validate_dataset_size(make_frame(np.full(200, 100.0)))


def test_filter_by_period_keeps_latest_window() -> None:
    frame = make_frame(np.full(72, 100.0))

    recent = filter_by_period(frame, "1D")

    assert len(recent) == 25
    assert recent["timestamp"].iloc[-1] == frame["timestamp"].iloc[-1]
