"""Fiscal period value objects."""

import datetime as dt

from pydantic import BaseModel, ConfigDict


class FiscalPeriod(BaseModel):
    """One slot of the April-March fiscal year."""

    model_config = ConfigDict(frozen=True)

    key: str  # "YYYY-MM"
    label: str  # "Apr 2025"
    date: dt.date
