from __future__ import annotations

import logging

import anndata as ad
import numpy as np
import pandas as pd
import pytest

from facsannot.core.annotation import (
    annotation_summary,
    apply_cluster_labels,
    coerce_label_map,
    merge_subcluster_annotations,
)
from facsannot.core.types import (
    ANNOTATION_COLUMNS,
    CELL_ONTOLOGY_CLASS,
    CELL_ONTOLOGY_ID,
    FREE_ANNOTATION,
    ClusterLabel,
    OntologyVocabulary,
)
from facsannot.errors import (
    ForeignCellError,
    OntologyValidationError,
    UnmappedClusterError,
)


@pytest.fixture
def vocab() -> OntologyVocabulary:
    return OntologyVocabulary.from_pairs(
        [
            ("pancreatic A cell", "CL:0000171"),
            ("pancreatic D cell", "CL:0000173"),
            ("B cell", "CL:0000236"),
        ]
    )


@pytest.fixture
def cells() -> pd.DataFrame:
    return pd.DataFrame(
        {"cluster": [0, 1, 2, 0, 1, 2], "plate.barcode": ["B1"] * 6},
        index=[f"c{i}" for i in range(6)],
    )


LABELS = {
    0: ClusterLabel("alpha", "pancreatic A cell"),
    1: ClusterLabel("B lymphocyte", "B cell"),
    2: ClusterLabel("unknown", None),
}


def test_apply_sets_annotation_from_cluster(cells, vocab):
    out = apply_cluster_labels(cells, LABELS, vocab)
    for cell, cluster in cells["cluster"].items():
        label = LABELS[cluster]
        assert out.loc[cell, FREE_ANNOTATION] == label.free_annotation
        if label.cell_ontology_class is None:
            assert out.loc[cell, CELL_ONTOLOGY_CLASS] is None
            assert out.loc[cell, CELL_ONTOLOGY_ID] is None
        else:
            assert out.loc[cell, CELL_ONTOLOGY_CLASS] == label.cell_ontology_class
    assert out.loc["c0", CELL_ONTOLOGY_ID] == "CL:0000171"
    assert out.loc["c4", CELL_ONTOLOGY_ID] == "CL:0000236"
    assert FREE_ANNOTATION not in cells.columns


def test_apply_unmapped_cluster_raises(cells, vocab):
    extra = pd.concat(
        [cells, pd.DataFrame({"cluster": [3], "plate.barcode": ["B1"]}, index=["c6"])]
    )
    with pytest.raises(UnmappedClusterError) as excinfo:
        apply_cluster_labels(extra, LABELS, vocab)
    assert excinfo.value.cluster_ids == (3,)


def test_apply_validates_before_writing(cells, vocab):
    bad = dict(LABELS)
    bad[2] = ClusterLabel("weird", "not_a_real_celltype")
    with pytest.raises(OntologyValidationError, match="not_a_real_celltype"):
        apply_cluster_labels(cells, bad, vocab)
    assert list(cells.columns) == ["cluster", "plate.barcode"]


def test_apply_is_idempotent(cells, vocab):
    first = apply_cluster_labels(cells, LABELS, vocab)
    second = apply_cluster_labels(cells, LABELS, vocab)
    cols = list(ANNOTATION_COLUMNS)
    assert first[cols].to_csv() == second[cols].to_csv()
    again = apply_cluster_labels(first, LABELS, vocab)
    assert again[cols].to_csv() == first[cols].to_csv()


def test_apply_accepts_scanpy_style_string_categories(cells, vocab):
    cats = cells.assign(cluster=pd.Categorical(cells["cluster"].astype(str)))
    raw_map = {
        "0": ("alpha", "pancreatic A cell"),
        "1": {"free_annotation": "B lymphocyte", "cell_ontology_class": "B cell"},
        "2": None,
    }
    out = apply_cluster_labels(cats, raw_map, vocab)
    assert out.loc["c3", CELL_ONTOLOGY_ID] == "CL:0000171"
    assert out.loc["c2", FREE_ANNOTATION] is None


def test_apply_warns_about_unused_entries(cells, vocab, caplog):
    caplog.set_level(logging.WARNING)
    labels = {**LABELS, 9: ClusterLabel("ghost", None)}
    apply_cluster_labels(cells, labels, vocab)
    assert "absent from the data" in caplog.text


def test_apply_on_anndata_returns_copy(cells, vocab):
    adata = ad.AnnData(X=np.zeros((6, 2), dtype=float), obs=cells.copy())
    out = apply_cluster_labels(adata, LABELS, vocab)
    assert isinstance(out, ad.AnnData)
    assert out.obs.loc["c1", CELL_ONTOLOGY_CLASS] == "B cell"
    assert FREE_ANNOTATION not in adata.obs.columns


def test_coerce_label_map_rejects_bad_entries():
    with pytest.raises(ValueError, match="not an integer"):
        coerce_label_map({"zero": ("a", None)})
    with pytest.raises(ValueError, match="more than once"):
        coerce_label_map({"1": None, 1: None})
    with pytest.raises(ValueError, match="Unknown cluster label field"):
        coerce_label_map({0: {"cell_type": "x"}})


def _annotated(rows: dict[str, str]) -> pd.DataFrame:
    return pd.DataFrame(
        {
            FREE_ANNOTATION: list(rows.values()),
            CELL_ONTOLOGY_CLASS: [None] * len(rows),
            CELL_ONTOLOGY_ID: [None] * len(rows),
        },
        index=list(rows),
        dtype=object,
    )


def test_merge_overwrites_only_subcluster_cells():
    parent = _annotated({"c1": "alpha", "c2": "alpha", "c3": "delta"})
    parent.loc["c3", CELL_ONTOLOGY_CLASS] = "pancreatic D cell"
    parent.loc["c3", CELL_ONTOLOGY_ID] = "CL:0000173"
    sub = _annotated({"c1": "pancreatic A cell", "c2": "pancreatic A cell"})
    sub[CELL_ONTOLOGY_CLASS] = "pancreatic A cell"
    sub[CELL_ONTOLOGY_ID] = "CL:0000171"

    merged = merge_subcluster_annotations(parent, sub)
    assert merged[FREE_ANNOTATION].to_dict() == {
        "c1": "pancreatic A cell",
        "c2": "pancreatic A cell",
        "c3": "delta",
    }
    assert merged.loc["c3"].tolist() == parent.loc["c3"].tolist()
    assert merged.loc["c1", CELL_ONTOLOGY_ID] == "CL:0000171"
    assert parent.loc["c1", FREE_ANNOTATION] == "alpha"


def test_merge_null_subcluster_labels_override_parent():
    parent = _annotated({"c1": "alpha", "c2": "beta"})
    sub = _annotated({"c1": None})
    merged = merge_subcluster_annotations(parent, sub)
    assert pd.isna(merged.loc["c1", FREE_ANNOTATION])
    assert merged.loc["c2", FREE_ANNOTATION] == "beta"


def test_merge_rejects_foreign_cells():
    parent = _annotated({"c1": "alpha", "c2": "alpha"})
    sub = _annotated({"c1": "x", "c9": "y"})
    with pytest.raises(ForeignCellError, match="c9") as excinfo:
        merge_subcluster_annotations(parent, sub)
    assert excinfo.value.cell_ids == ("c9",)


def test_merge_on_anndata_parent():
    parent_obs = _annotated({"c1": "alpha", "c2": "alpha", "c3": "delta"})
    parent = ad.AnnData(X=np.zeros((3, 1), dtype=float), obs=parent_obs)
    sub = ad.AnnData(
        X=np.zeros((1, 1), dtype=float), obs=_annotated({"c2": "pancreatic A cell"})
    )
    merged = merge_subcluster_annotations(parent, sub)
    assert isinstance(merged, ad.AnnData)
    assert merged.obs[FREE_ANNOTATION].tolist() == ["alpha", "pancreatic A cell", "delta"]
    assert parent.obs[FREE_ANNOTATION].tolist() == ["alpha", "alpha", "delta"]


def test_annotation_summary_counts(cells, vocab):
    out = apply_cluster_labels(cells, LABELS, vocab)
    summary = annotation_summary(out)
    assert summary["n_cells"].sum() == 6
    assert set(summary["cluster"]) == {0, 1, 2}
    row = summary[summary["cluster"] == 2].iloc[0]
    assert row[CELL_ONTOLOGY_CLASS] == "NA"
