#!/usr/bin/env python
# coding: utf-8

"""
Error and warning categories shared by the pipeline modules.
"""

import warnings

import pandas as pd


class DataIntegrityError(ValueError):
    """Fatal mismatch between tables that must correspond one-to-one."""


class EmptyResultWarning(UserWarning):
    """A filtering step produced a zero-row table."""


def warn_if_empty(df: pd.DataFrame, step: str) -> pd.DataFrame:
    """Emit EmptyResultWarning when ``df`` has no rows; return ``df`` unchanged."""
    if len(df) == 0:
        warnings.warn(f"{step} returned no rows", EmptyResultWarning, stacklevel=3)
    return df
