"""
Synthetic Loan Generation
=========================

Samples loan terms for a demonstration pool. Terms are drawn uniformly:

- principal in ``[principal_min, principal_max]``
- coupon in ``[rate_bps_min, rate_bps_max]`` basis points
- maturity between ``maturity_years_min`` and ``maturity_years_max`` years
  from now, as epoch milliseconds

Example
-------
>>> frame = generate_loan_frame(20, rng=np.random.default_rng(7))
>>> loans = frame_to_loans(frame)
>>> len(loans)
20
"""

from __future__ import annotations

from typing import List, Optional

import numpy as np
import pandas as pd

from .session import LoanRecord

PRINCIPAL_COLUMN = "principal"
RATE_COLUMN = "interest rate bps"
MATURITY_COLUMN = "maturity timestamp"


def generate_loan_frame(
    n: int = 20,
    principal_min: int = 100_000,
    principal_max: int = 1_000_000,
    rate_bps_min: int = 100,
    rate_bps_max: int = 1_000,
    maturity_years_min: int = 1,
    maturity_years_max: int = 5,
    rng: Optional[np.random.Generator] = None,
    now: Optional[pd.Timestamp] = None,
) -> pd.DataFrame:
    """Return ``n`` random loans as a DataFrame, one row per loan."""
    if n <= 0:
        raise ValueError("n must be positive")
    rng = rng or np.random.default_rng()
    now = now if now is not None else pd.Timestamp.now(tz="UTC")

    min_ms = int((now + pd.DateOffset(years=maturity_years_min)).timestamp() * 1000)
    max_ms = int((now + pd.DateOffset(years=maturity_years_max)).timestamp() * 1000)

    return pd.DataFrame(
        {
            PRINCIPAL_COLUMN: rng.integers(principal_min, principal_max, size=n, endpoint=True),
            RATE_COLUMN: rng.integers(rate_bps_min, rate_bps_max, size=n, endpoint=True),
            MATURITY_COLUMN: rng.integers(min_ms, max_ms, size=n, endpoint=True),
        }
    )


def frame_to_loans(frame: pd.DataFrame) -> List[LoanRecord]:
    return [
        LoanRecord(
            principal=int(row[PRINCIPAL_COLUMN]),
            interest_rate_bps=int(row[RATE_COLUMN]),
            maturity_timestamp=int(row[MATURITY_COLUMN]),
        )
        for _, row in frame.iterrows()
    ]
