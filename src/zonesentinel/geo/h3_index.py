"""
ZoneSentinel H3 Cell Identifiers

Validation and resolution handling for H3 cell indexes, backed by the h3
library. Cells are computed by the geocoding collaborator; this module
checks that an identifier is a real cell and moves to coarser resolutions,
which needs no geometry.

Identifiers are accepted case-insensitively, with surrounding whitespace
and an optional leading zero (16-digit form), and returned in the
canonical 15-character lowercase form.
"""

from __future__ import annotations

import h3

from ..exceptions import InvalidCellError


MAX_RESOLUTION = 15

_HEX_CHARS = frozenset("0123456789abcdef")


def _normalize(cell_id: object) -> str:
    if not isinstance(cell_id, str):
        raise InvalidCellError(cell_id, "identifier must be a string")

    normalized = cell_id.strip().lower()
    if not normalized:
        raise InvalidCellError(cell_id, "identifier is empty")
    if len(normalized) not in (15, 16) or not set(normalized) <= _HEX_CHARS:
        raise InvalidCellError(cell_id, "expected a 15-character hexadecimal H3 index")

    return normalized.lstrip("0").rjust(15, "0")


def validate_cell(cell_id: object) -> str:
    """
    Validate an H3 cell identifier and return its canonical form.

    Rejects anything h3 does not consider a cell: other index modes,
    out-of-range base cells, malformed digits and the deleted
    subsequence of pentagon cells.

    Raises:
        InvalidCellError: identifier is empty or not a valid cell
    """
    normalized = _normalize(cell_id)
    if not h3.is_valid_cell(normalized):
        raise InvalidCellError(cell_id, "not a valid H3 cell index")
    return normalized


def is_valid_cell(cell_id: object) -> bool:
    """Non-raising variant of validate_cell."""
    try:
        validate_cell(cell_id)
    except InvalidCellError:
        return False
    return True


def get_resolution(cell_id: str) -> int:
    """Resolution encoded in a valid cell identifier."""
    return h3.get_resolution(validate_cell(cell_id))


def cell_to_parent(cell_id: str, resolution: int) -> str:
    """
    Containing cell at a coarser (or equal) resolution.

    Raises:
        InvalidCellError: cell is invalid or resolution is finer than the cell's
    """
    normalized = validate_cell(cell_id)
    current = h3.get_resolution(normalized)

    if not 0 <= resolution <= MAX_RESOLUTION:
        raise InvalidCellError(cell_id, f"resolution {resolution} out of range")
    if resolution > current:
        raise InvalidCellError(
            cell_id, f"cannot refine resolution {current} to {resolution} without coordinates"
        )
    if resolution == current:
        return normalized

    return h3.cell_to_parent(normalized, resolution)
