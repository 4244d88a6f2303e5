"""Tissue annotation pipeline entrypoints."""


def run_tissue(*args, **kwargs):
    from facsannot.pipeline.tissue import run_tissue as _run_tissue

    return _run_tissue(*args, **kwargs)


__all__ = ["run_tissue"]
