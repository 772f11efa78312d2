"""
ZIP code jurisdiction rate index.

Loads the per-ZIP rate table (state, tax region, and the state / county /
city / special-district rate components) once at startup and serves
read-only lookups for the tax resolver.

Source rates are decimal fractions (0.0725); the index stores them as
percentages (7.25).
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from types import MappingProxyType
from typing import IO, Iterable, Iterator, Mapping, Optional, Union

import pandas as pd

from tax_service.log import get_logger

logger = get_logger(__name__)


ZIP_COLUMN = "Zip Code"
STATE_COLUMN = "State"
REGION_COLUMN = "TaxRegionName"

# record field -> source column
RATE_COLUMNS: dict[str, str] = {
    "combined_rate": "EstimatedCombinedRate",
    "state_rate": "StateRate",
    "county_rate": "EstimatedCountyRate",
    "city_rate": "EstimatedCityRate",
    "special_rate": "EstimatedSpecialRate",
}


class RateTableError(RuntimeError):
    """The rate table could not be read."""


# ---------------------------------------------------------------------------
# State name normalization
# ---------------------------------------------------------------------------

STATE_ABBREVIATIONS: Mapping[str, str] = MappingProxyType({
    "Alabama": "AL", "Alaska": "AK", "Arizona": "AZ", "Arkansas": "AR",
    "California": "CA", "Colorado": "CO", "Connecticut": "CT",
    "Delaware": "DE", "District of Columbia": "DC", "Florida": "FL",
    "Georgia": "GA", "Hawaii": "HI", "Idaho": "ID", "Illinois": "IL",
    "Indiana": "IN", "Iowa": "IA", "Kansas": "KS", "Kentucky": "KY",
    "Louisiana": "LA", "Maine": "ME", "Maryland": "MD",
    "Massachusetts": "MA", "Michigan": "MI", "Minnesota": "MN",
    "Mississippi": "MS", "Missouri": "MO", "Montana": "MT",
    "Nebraska": "NE", "Nevada": "NV", "New Hampshire": "NH",
    "New Jersey": "NJ", "New Mexico": "NM", "New York": "NY",
    "North Carolina": "NC", "North Dakota": "ND", "Ohio": "OH",
    "Oklahoma": "OK", "Oregon": "OR", "Pennsylvania": "PA",
    "Rhode Island": "RI", "South Carolina": "SC", "South Dakota": "SD",
    "Tennessee": "TN", "Texas": "TX", "Utah": "UT", "Vermont": "VT",
    "Virginia": "VA", "Washington": "WA", "West Virginia": "WV",
    "Wisconsin": "WI", "Wyoming": "WY",
})


def abbreviate_state(state: Optional[str]) -> Optional[str]:
    """
    Convert a full state name to its two-letter code.

    Codes and unrecognized values come back unchanged, so the call is
    safe to repeat.
    """
    if state is None:
        return None
    name = state.strip()
    return STATE_ABBREVIATIONS.get(name, name)


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class JurisdictionRecord:
    """Tax data for the jurisdiction a ZIP code belongs to."""

    state_code: str
    region_name: str
    combined_rate: float = 0.0  # percent, e.g. 7.25
    state_rate: float = 0.0
    county_rate: float = 0.0
    city_rate: float = 0.0
    special_rate: float = 0.0


def _parse_rate(value: object) -> float:
    """
    Parse a fractional rate cell into a percentage.

    Missing, non-numeric, non-finite and negative values become 0.
    """
    if value is None:
        return 0.0
    text = str(value).strip()
    if not text:
        return 0.0
    try:
        fraction = Decimal(text)
    except InvalidOperation:
        return 0.0
    if not fraction.is_finite() or fraction < 0:
        return 0.0
    return float(fraction * 100)


def _cell(row: Mapping[str, object], column: str) -> str:
    value = row.get(column)
    if value is None:
        return ""
    return str(value).strip()


def record_from_row(row: Mapping[str, object]) -> JurisdictionRecord:
    """Build a record from one rate-table row keyed by column header."""
    rates = {
        field_name: _parse_rate(row.get(column))
        for field_name, column in RATE_COLUMNS.items()
    }
    return JurisdictionRecord(
        state_code=_cell(row, STATE_COLUMN),
        region_name=_cell(row, REGION_COLUMN),
        **rates,
    )


# ---------------------------------------------------------------------------
# Index
# ---------------------------------------------------------------------------


class JurisdictionIndex:
    """
    Read-only lookup from ZIP code to jurisdiction record.

    ZIP codes match exactly as they appear in the source table. The
    index exposes no way to change its contents once built.
    """

    def __init__(
        self, records: Optional[Mapping[str, JurisdictionRecord]] = None
    ) -> None:
        self._records: Mapping[str, JurisdictionRecord] = MappingProxyType(
            dict(records or {})
        )

    @classmethod
    def from_rows(
        cls, rows: Iterable[Mapping[str, object]]
    ) -> "JurisdictionIndex":
        """Build an index from dict rows; later rows win on duplicate ZIPs."""
        records: dict[str, JurisdictionRecord] = {}
        for i, row in enumerate(rows):
            zip_code = _cell(row, ZIP_COLUMN)
            if not zip_code:
                logger.debug("Skipping rate row %d: no ZIP code", i + 1)
                continue
            records[zip_code] = record_from_row(row)
        return cls(records)

    @classmethod
    def from_csv(
        cls, source: Union[str, Path, IO[str]]
    ) -> "JurisdictionIndex":
        """
        Load the index from a rate-table CSV.

        Every column is read as text so ZIP codes keep leading zeros
        and rate parsing stays in Decimal.
        """
        try:
            frame = pd.read_csv(
                source, dtype=str, keep_default_na=False, skipinitialspace=True
            )
        except (OSError, ValueError) as e:
            raise RateTableError(f"Cannot read rate table {source}: {e}") from e

        frame.columns = frame.columns.str.strip()
        if ZIP_COLUMN not in frame.columns:
            raise RateTableError(
                f"Rate table {source} has no '{ZIP_COLUMN}' column"
            )

        index = cls.from_rows(frame.to_dict(orient="records"))
        logger.info(
            "Loaded %d jurisdictions from %s", len(index), source
        )
        return index

    def lookup(self, zip_code: Optional[str]) -> Optional[JurisdictionRecord]:
        """Return the record for a ZIP code, or None if it is unknown."""
        if zip_code is None:
            return None
        return self._records.get(zip_code)

    def for_state(self, state: str) -> dict[str, JurisdictionRecord]:
        """Return ZIP -> record for every ZIP in a state, sorted by ZIP."""
        code = abbreviate_state(state)
        return {
            zip_code: self._records[zip_code]
            for zip_code in sorted(self._records)
            if self._records[zip_code].state_code == code
        }

    @property
    def records(self) -> Mapping[str, JurisdictionRecord]:
        return self._records

    def __contains__(self, zip_code: object) -> bool:
        return zip_code in self._records

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[str]:
        return iter(self._records)
