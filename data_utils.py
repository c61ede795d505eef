#data_utils.py
import logging
from pathlib import Path

import numpy as np
import pandas as pd

from config import EXPECTED_COLUMNS
from dca_optimizer.errors import DataError

# Minimum dataset size requirements for reliable calculations
MIN_DATASET_SIZE = 50  # Minimum candles needed for reliable technical indicators
MIN_ROLLING_PERIODS = {'ema': 100, 'macd': 49, 'bollinger': 30, 'atr': 28, 'stochrsi': 44}


def validate_dataset_size(df, symbol=None):
    """
    Checks that the dataset has enough candles for reliable indicator warm-up.
    Short datasets are still usable (the strategy simply holds), so this only warns.

    Args:
        df (pd.DataFrame): Input DataFrame to validate
        symbol (str, optional): Symbol name for logging

    Returns:
        bool: True if dataset is large enough, False otherwise
    """
    symbol_info = f" for {symbol}" if symbol else ""

    if len(df) < MIN_DATASET_SIZE:
        logging.warning(f"⚠️ Dataset too small{symbol_info}: {len(df)} candles < {MIN_DATASET_SIZE} minimum recommended")
        return False

    max_required = max(MIN_ROLLING_PERIODS.values())
    if len(df) < max_required:
        logging.warning(f"Dataset{symbol_info} may be too small for slow indicators: {len(df)} candles < {max_required} recommended")

    return True


def validate_price_data(df):
    """
    Fatal precondition check on the price series, run once before optimization.

    Raises:
        DataError: missing/empty frame, missing columns, non increasing
                   timestamps or non positive close prices
    """
    if df is None or not isinstance(df, pd.DataFrame):
        raise DataError("Price data must be a pandas DataFrame")
    if df.empty:
        raise DataError("Price data is empty")

    missing = [col for col in EXPECTED_COLUMNS if col not in df.columns]
    if missing:
        raise DataError(f"Price data is missing column(s): {missing}")

    try:
        stamps = pd.to_datetime(df['timestamp'], utc=True)
    except (ValueError, TypeError) as exc:
        raise DataError(f"Unparseable timestamps in price data: {exc}") from exc
    if len(stamps) > 1 and not (stamps.diff().iloc[1:] > pd.Timedelta(0)).all():
        raise DataError("Price data timestamps must be strictly increasing")

    closes = df['close'].to_numpy(dtype=float)
    if not np.all(np.isfinite(closes)) or (closes <= 0).any():
        raise DataError("Price data contains non-finite or non-positive close prices")

    return True


def load_price_data(csv_path, start=None, end=None):
    """
    Loads an OHLCV CSV (timestamp, open, high, low, close, volume).

    Timestamps may be ISO strings or epoch milliseconds. Rows are sorted,
    de-duplicated and optionally filtered to [start, end].

    Raises:
        DataError: file missing, unreadable or empty after filtering
    """
    path = Path(csv_path)
    if not path.exists():
        raise DataError(f"Price file not found: {path}")

    try:
        df = pd.read_csv(path)
    except (OSError, pd.errors.ParserError, pd.errors.EmptyDataError) as exc:
        raise DataError(f"Cannot read price file {path}: {exc}") from exc

    df.columns = [str(col).strip().lower() for col in df.columns]
    missing = [col for col in EXPECTED_COLUMNS if col not in df.columns]
    if missing:
        raise DataError(f"{path.name} is missing column(s): {missing}")

    if pd.api.types.is_numeric_dtype(df['timestamp']):
        df['timestamp'] = pd.to_datetime(df['timestamp'], unit='ms', utc=True)
    else:
        df['timestamp'] = pd.to_datetime(df['timestamp'], utc=True)
    df['timestamp'] = df['timestamp'].dt.tz_localize(None)

    df = df[EXPECTED_COLUMNS].sort_values('timestamp')
    df = df.drop_duplicates(subset='timestamp', keep='last')

    if start is not None:
        df = df[df['timestamp'] >= pd.Timestamp(start)]
    if end is not None:
        df = df[df['timestamp'] <= pd.Timestamp(end)]

    df = df.reset_index(drop=True)
    if df.empty:
        raise DataError(f"No price data in {path.name} for the requested range")

    logging.info(f"📊 Loaded {len(df)} candles from {path.name} "
                 f"({df['timestamp'].iloc[0]} → {df['timestamp'].iloc[-1]})")
    validate_dataset_size(df, symbol=path.stem)
    return df


def filter_by_period(df, period):
    """
    Keeps only the most recent `period` (a pd.Timedelta or string like '30D')
    of the series. Returns a new DataFrame.
    """
    if df.empty:
        return df.copy()
    delta = pd.Timedelta(period)
    cutoff = df['timestamp'].iloc[-1] - delta
    return df[df['timestamp'] >= cutoff].reset_index(drop=True)
