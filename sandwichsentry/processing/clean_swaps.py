"""Cleaning helpers for decoded swap data."""
from __future__ import annotations

from typing import Iterable, List

import pandas as pd

KEY_COLUMNS = ("slot", "inclusion_index")
ADDRESS_COLUMNS = (
    "leader_identity",
    "signature",
    "pool_id",
    "signer",
    "wrapper_program",
    "program",
    "input_mint",
    "output_mint",
)
AMOUNT_COLUMNS = ("input_amount", "output_amount")
DEDUP_COLUMNS = ["slot", "signature", "pool_id", "inclusion_index"]


def clean_swap_frame(frame: pd.DataFrame) -> pd.DataFrame:
    """Return a cleaned dataframe of decoded swaps, ordered by slot and inclusion index."""
    missing = [column for column in KEY_COLUMNS if column not in frame.columns]
    if missing:
        raise ValueError(f"Input frame must include columns: {', '.join(missing)}")

    cleaned = frame.copy()
    for column in KEY_COLUMNS:
        cleaned[column] = pd.to_numeric(cleaned[column], errors="coerce")
    cleaned = cleaned.dropna(subset=list(KEY_COLUMNS))
    for column in KEY_COLUMNS:
        cleaned[column] = cleaned[column].astype("int64")

    # base58 is case sensitive: strip only
    for column in ADDRESS_COLUMNS:
        if column not in cleaned.columns:
            cleaned[column] = None
        cleaned[column] = (
            cleaned[column]
            .astype("string")
            .str.strip()
            .replace("", pd.NA)
        )

    if "direction" not in cleaned.columns:
        cleaned["direction"] = None
    cleaned["direction"] = cleaned["direction"].astype("string").str.strip().str.lower()

    # amounts stay strings so u64 values survive without float rounding
    for column in AMOUNT_COLUMNS:
        if column not in cleaned.columns:
            cleaned[column] = None
        cleaned[column] = cleaned[column].astype("string").str.strip()

    if "dont_front" not in cleaned.columns:
        cleaned["dont_front"] = False
    cleaned["dont_front"] = cleaned["dont_front"].fillna(False).astype(bool)

    subset = _existing_columns(cleaned, DEDUP_COLUMNS)
    if subset:
        cleaned = cleaned.drop_duplicates(subset=subset)

    cleaned = cleaned.sort_values(list(KEY_COLUMNS), kind="stable").reset_index(drop=True)
    return cleaned


def _existing_columns(frame: pd.DataFrame, columns: Iterable[str]) -> List[str]:
    return [col for col in columns if col in frame.columns]
