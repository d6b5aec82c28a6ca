from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Any, List
import pandas as pd

@dataclass
class MetricsStore:
    supply_rows: List[Dict[str, Any]] = field(default_factory=list)
    tier_rows: List[Dict[str, Any]] = field(default_factory=list)

    def add_supply(self, row: Dict[str, Any]) -> None:
        self.supply_rows.append(row)

    def add_tier_rows(self, rows: List[Dict[str, Any]]) -> None:
        self.tier_rows.extend(rows)

    def supply_df(self) -> pd.DataFrame:
        return pd.DataFrame(self.supply_rows)

    def tier_df(self) -> pd.DataFrame:
        return pd.DataFrame(self.tier_rows)

    def tier_fill_df(self) -> pd.DataFrame:
        """Allocated units per tier (columns) by block (index)."""
        df = self.tier_df()
        if df.empty:
            return df
        return df.pivot_table(index="block", columns="tier", values="allocated", aggfunc="last")
