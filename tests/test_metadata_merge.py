from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from facsannot.core.metadata import merge_plate_metadata, plate_barcode_from_cell_id
from facsannot.core.types import PLATE_BARCODE
from facsannot.errors import MetadataJoinError

CELLS = [
    "P9.MAA000400.3_8_M.1.1",
    "A1.B000126.3_39_F.1.1",
    "K4.B000127.3_39_F.1.1",
    "C2.B000126.3_39_F.1.1",
    "A7.MAA000400.3_8_M.1.1",
]


def _counts(cells: list[str]) -> pd.DataFrame:
    rng = np.random.default_rng(0)
    return pd.DataFrame(
        rng.integers(0, 50, size=(4, len(cells))),
        index=["Actb", "Gapdh", "Sst", "ERCC-00002"],
        columns=cells,
    )


def _plates() -> pd.DataFrame:
    return pd.DataFrame(
        {
            PLATE_BARCODE: ["B000126", "B000127", "MAA000400"],
            "mouse.id": ["3_39_F", "3_39_F", "3_8_M"],
            "mouse.sex": ["F", "F", "M"],
        }
    )


def test_plate_barcode_is_second_dot_token_of_first_underscore_token():
    assert plate_barcode_from_cell_id("A1.B000126.3_39_F.1.1") == "B000126"
    assert plate_barcode_from_cell_id("X.Z_Y") == "Z"
    assert plate_barcode_from_cell_id("H12.MAA001857.3_38_F.1.1") == "MAA001857"


@pytest.mark.parametrize("bad", ["A1B000126_39_F", "A1.B000126.3", "A1._39", "plain"])
def test_malformed_identifier_fails_instead_of_defaulting(bad):
    with pytest.raises(MetadataJoinError) as excinfo:
        plate_barcode_from_cell_id(bad)
    assert excinfo.value.cell_ids == (bad,)


def test_merge_preserves_cell_count_and_sorts_by_cell_id():
    counts = _counts(CELLS)
    counts_sorted, cells = merge_plate_metadata(counts, _plates())

    assert len(cells) == len(CELLS)
    assert list(cells.index) == sorted(CELLS)
    assert list(counts_sorted.columns) == list(cells.index)
    assert cells.index.is_monotonic_increasing
    assert cells.loc["A1.B000126.3_39_F.1.1", PLATE_BARCODE] == "B000126"
    assert cells.loc["A7.MAA000400.3_8_M.1.1", "mouse.sex"] == "M"
    for cell in CELLS:
        assert counts_sorted[cell].tolist() == counts[cell].tolist()


def test_merge_order_independent_of_input_permutation():
    counts = _counts(CELLS)
    _, reference = merge_plate_metadata(counts, _plates())
    rng = np.random.default_rng(7)
    for _ in range(5):
        order = list(rng.permutation(CELLS))
        shuffled = counts.loc[:, order]
        counts_sorted, cells = merge_plate_metadata(shuffled, _plates().iloc[::-1])
        pd.testing.assert_frame_equal(cells, reference)
        assert list(counts_sorted.columns) == sorted(CELLS)


def test_merge_does_not_mutate_inputs():
    counts = _counts(CELLS)
    plates = _plates()
    counts_before = counts.copy()
    plates_before = plates.copy()
    merge_plate_metadata(counts, plates)
    pd.testing.assert_frame_equal(counts, counts_before)
    pd.testing.assert_frame_equal(plates, plates_before)


def test_unmatched_plate_aborts_and_names_every_cell():
    cells = CELLS + ["B3.ZZZ999.1_1_F.1.1", "B4.ZZZ999.1_1_F.1.1"]
    with pytest.raises(MetadataJoinError, match="ZZZ999") as excinfo:
        merge_plate_metadata(_counts(cells), _plates())
    assert set(excinfo.value.cell_ids) == {"B3.ZZZ999.1_1_F.1.1", "B4.ZZZ999.1_1_F.1.1"}


def test_malformed_cell_in_matrix_fails_merge():
    with pytest.raises(MetadataJoinError, match="malformed"):
        merge_plate_metadata(_counts(CELLS + ["no_plate_here"]), _plates())


def test_duplicate_plate_keys_rejected():
    plates = pd.concat([_plates(), _plates().iloc[:1]], ignore_index=True)
    with pytest.raises(ValueError, match="Duplicate plate barcodes"):
        merge_plate_metadata(_counts(CELLS), plates)


def test_missing_key_column_rejected():
    with pytest.raises(KeyError):
        merge_plate_metadata(_counts(CELLS), _plates().rename(columns={PLATE_BARCODE: "plate"}))
