"""Versioned output contract of the category model.

The label tables are index-sensitive: their order must match the label order
the model was trained with. The expected output lengths are derived from the
tables, so changing a table changes the contract and needs a version bump.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from numpy.typing import ArrayLike

NOT_WASTE_CATEGORY = "Not Waste"
NOT_WASTE_SUBTYPE = "-"


@dataclass(frozen=True)
class OutputSchema:
    """Label tables and expected output lengths for one model release."""

    version: str
    category_labels: tuple[str, ...]
    subtype_labels: tuple[str, ...]

    @property
    def category_length(self) -> int:
        return len(self.category_labels)

    @property
    def subtype_length(self) -> int:
        return len(self.subtype_labels)

    @property
    def expected_lengths(self) -> frozenset[int]:
        return frozenset({self.category_length, self.subtype_length})

    def category_label(self, index: int) -> str:
        return self.category_labels[index]

    def subtype_label(self, index: int) -> str:
        return self.subtype_labels[index]


OUTPUT_SCHEMA_V1 = OutputSchema(
    version="1",
    category_labels=("Anorganik", "Organik"),
    subtype_labels=(
        "Cangkang Telur",
        "Elektronik",
        "Kaca",
        "Kain",
        "Kardus",
        "Karet",
        "Kayu",
        "Kertas",
        "Kotoran Hewan",
        "Logam",
        "Plastik",
        "Sepatu",
        "Sisa Buah",
        "Sisa Teh Kopi",
        "Sisa makanan",
        "Styrofoam",
        "Tumbuhan",
    ),
)

CURRENT_SCHEMA = OUTPUT_SCHEMA_V1


def argmax(values: ArrayLike) -> int:
    """Index of the largest value; ties resolve to the lowest index."""
    flat = np.asarray(values).ravel()
    if flat.size == 0:
        raise ValueError("argmax of an empty array")
    return int(np.argmax(flat))
