"""scclonemix: probabilistic assignment of single cells to phylogeny-derived clones.

The public API mirrors the analysis steps, left to right:

    fit = fit_em(A, D, config, psi)
    calls = assign_cells(fit.prob, config)
    clusters = cluster_merge(fit.prob, target_k=2)
    bands = bootstrap(A, D, config, psi, nboot=500)

Most users running on matrices exported to TSV should use the CLI:

    scclonemix assign --alt A.tsv --depth D.tsv --config C.tsv --outdir ...

"""

from __future__ import annotations

__all__ = [
    "__version__",
    "CloneConfiguration",
    "DegenerateFitError",
    "InvalidInputError",
    "NonConvergenceWarning",
    "ReadCounts",
    "assign_cells",
    "bootstrap",
    "check_identifiability",
    "cluster_merge",
    "fit_em",
    "fit_gibbs",
    "identifiability_matrix",
    "reassign_merged",
    "run_pipeline",
    "vote_clone_to_cluster",
]

__version__ = "0.1.0"

from .assigner import assign_cells
from .bootstrap import bootstrap
from .cluster import cluster_merge, reassign_merged, vote_clone_to_cluster
from .em import fit_em
from .errors import DegenerateFitError, InvalidInputError, NonConvergenceWarning
from .gibbs import fit_gibbs
from .identifiability import check_identifiability, identifiability_matrix
from .models import CloneConfiguration, ReadCounts
from .pipeline import run_pipeline
