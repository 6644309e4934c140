"""
EASIX Landmark Predictor - Lab Derivation
=========================================

Derives the EASIX biomarker from routine labs:

    EASIX = LDH (U/L) x creatinine (mg/dL) / platelets (10^9/L)

The landmark model works on log2(EASIX). Values are rounded to two decimals
before prediction, which is what the reference R/Shiny application does with
its inputs; skipping the rounding gives small but visible differences in the
validation cases.

Only labs drawn between day +20 and day +120 are used.
"""

from typing import List, Optional
import logging

import numpy as np
import pandas as pd

from .observations import Observation

logger = logging.getLogger(__name__)


# Guards the platelet denominator against zero counts
PLATELET_FLOOR = 1e-9

# Post-transplant day window for labs feeding the landmark model
DAY_RANGE = (20.0, 120.0)

LOG2_DECIMALS = 2

LAB_COLUMNS = ["day", "ldh", "creatinine", "platelets"]


def compute_easix(ldh, creatinine, platelets):
    """EASIX from LDH, creatinine and platelets (scalars or arrays)."""
    return np.asarray(ldh, dtype=float) * np.asarray(creatinine, dtype=float) / np.maximum(
        np.asarray(platelets, dtype=float), PLATELET_FLOOR
    )


def easix_table(labs: pd.DataFrame, day_range: Optional[tuple] = DAY_RANGE) -> pd.DataFrame:
    """
    Compute EASIX and log2 EASIX for each usable lab row.

    Rows with missing, non-numeric or negative inputs, a non-positive EASIX,
    or a day outside `day_range` are dropped.

    Args:
        labs: DataFrame with columns day, ldh, creatinine, platelets
        day_range: Inclusive (min, max) day window, or None for no window

    Returns:
        DataFrame with columns day, easix, log2_easix sorted by day
    """
    missing = [c for c in LAB_COLUMNS if c not in labs.columns]
    if missing:
        raise KeyError(f"Missing columns: {missing}")

    df = labs[LAB_COLUMNS].apply(pd.to_numeric, errors='coerce')
    usable = df.notna().all(axis=1) & (df >= 0).all(axis=1)
    df = df[usable].copy()

    df['easix'] = compute_easix(df['ldh'], df['creatinine'], df['platelets'])
    df = df[df['easix'] > 0].copy()
    df['log2_easix'] = np.log2(df['easix'])
    df = df[np.isfinite(df['log2_easix'])]

    if day_range is not None:
        lo, hi = day_range
        df = df[df['day'].between(lo, hi)]

    dropped = len(labs) - len(df)
    if dropped:
        logger.debug(f"Dropped {dropped} of {len(labs)} lab rows")

    return df[['day', 'easix', 'log2_easix']].sort_values('day', kind='stable').reset_index(drop=True)


def observations_from_labs(
    labs: pd.DataFrame,
    day_range: Optional[tuple] = DAY_RANGE,
    decimals: Optional[int] = LOG2_DECIMALS
) -> List[Observation]:
    """Turn a lab table into log2 EASIX observations ready for prediction."""
    table = easix_table(labs, day_range=day_range)
    values = table['log2_easix']
    if decimals is not None:
        values = values.round(decimals)
    return [Observation(day=float(d), value=float(v)) for d, v in zip(table['day'], values)]
