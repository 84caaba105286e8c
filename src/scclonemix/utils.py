from __future__ import annotations

import gzip
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, TextIO, Tuple

import numpy as np

logger = logging.getLogger(__name__)


def five_number_summary(x: np.ndarray, axis: int = -1) -> Tuple[np.ndarray, ...]:
    """(min, Q1, median, Q3, max) along ``axis``, ignoring NaN entries."""
    q = np.nanquantile(x, [0.0, 0.25, 0.5, 0.75, 1.0], axis=axis)
    return tuple(q[i] for i in range(5))


def tukey_whiskers(
    minimum: np.ndarray,
    q1: np.ndarray,
    q3: np.ndarray,
    maximum: np.ndarray,
    k: float = 1.5,
) -> Tuple[np.ndarray, np.ndarray]:
    iqr = q3 - q1
    lo = np.maximum(minimum, q1 - k * iqr)
    hi = np.minimum(maximum, q3 + k * iqr)
    return lo, hi


def geweke_z(chain: np.ndarray, first: float = 0.1, last: float = 0.5) -> float:
    """Geweke z-score comparing the mean of the first and last chain segments."""
    chain = np.asarray(chain, dtype=float)
    n = len(chain)
    n_a = int(np.floor(first * n))
    n_b = int(np.floor(last * n))
    if n_a < 2 or n_b < 2:
        return float("nan")
    a = chain[:n_a]
    b = chain[n - n_b :]
    diff = a.mean() - b.mean()
    se = np.sqrt(a.var(ddof=1) / n_a + b.var(ddof=1) / n_b)
    if se == 0:
        return 0.0 if diff == 0 else float(np.sign(diff) * np.inf)
    return float(diff / se)


def top_two(prob: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Per row: index of the largest entry (first on ties), largest and second-largest value."""
    best = np.argmax(prob, axis=1)
    if prob.shape[1] < 2:
        return best, prob.max(axis=1), np.zeros(prob.shape[0])
    part = np.sort(prob, axis=1)
    return best, part[:, -1], part[:, -2]


def match_labels(labels: Sequence[str], reference: Sequence[str]) -> List[int]:
    """Indices of ``labels`` within ``reference``; raises KeyError naming the missing labels."""
    lookup: Dict[str, int] = {lab: i for i, lab in enumerate(reference)}
    missing = [lab for lab in labels if lab not in lookup]
    if missing:
        raise KeyError(f"Labels not found: {', '.join(missing[:10])}")
    return [lookup[lab] for lab in labels]


def ensure_outdir(path: str | Path) -> Path:
    p = Path(path)
    p.mkdir(parents=True, exist_ok=True)
    return p


def open_textmaybe_gzip(path: str | Path, mode: str = "rt") -> TextIO:
    p = str(path)
    if p.endswith(".gz"):
        return gzip.open(p, mode)  # type: ignore[return-value]
    return open(p, mode)


def write_json(path: str | Path, obj: Any) -> None:
    with open(path, "wt", encoding="utf-8") as f:
        json.dump(obj, f, indent=2, sort_keys=True)


def read_matrix_tsv(path: str | Path) -> Tuple[np.ndarray, List[str], List[str]]:
    """Read a labelled matrix: header row of column ids, first column of row ids.

    ``NA``, ``NaN`` and empty fields become NaN.
    """
    row_ids: List[str] = []
    rows: List[List[float]] = []
    with open_textmaybe_gzip(path, "rt") as fh:
        header = fh.readline().rstrip("\n").split("\t")
        col_ids = header[1:]
        for lineno, line in enumerate(fh, start=2):
            line = line.rstrip("\n")
            if not line:
                continue
            fields = line.split("\t")
            if len(fields) != len(header):
                raise ValueError(f"{path}:{lineno}: expected {len(header)} fields, got {len(fields)}")
            row_ids.append(fields[0])
            rows.append([_parse_field(x) for x in fields[1:]])
    mat = np.asarray(rows, dtype=float).reshape(len(rows), len(col_ids))
    logger.debug("Read %d x %d matrix from %s", mat.shape[0], mat.shape[1], path)
    return mat, row_ids, col_ids


def _parse_field(x: str) -> float:
    x = x.strip()
    if x in ("", "NA", "NaN", "nan", "."):
        return float("nan")
    return float(x)


def write_matrix_tsv(
    path: str | Path,
    mat: np.ndarray,
    *,
    row_ids: Sequence[str],
    col_ids: Sequence[str],
    corner: str = "id",
) -> None:
    with open_textmaybe_gzip(path, "wt") as fh:
        fh.write("\t".join([corner, *col_ids]) + "\n")
        for rid, row in zip(row_ids, mat):
            vals = ["NA" if not np.isfinite(v) else f"{float(v):g}" for v in row]
            fh.write("\t".join([rid, *vals]) + "\n")


def read_vector_tsv(path: str | Path, *, order: Optional[Sequence[str]] = None) -> np.ndarray:
    """Read ``id<TAB>value`` lines (optional header), reordered to ``order`` if given."""
    ids: List[str] = []
    vals: List[float] = []
    with open_textmaybe_gzip(path, "rt") as fh:
        for line in fh:
            fields = line.rstrip("\n").split("\t")
            if len(fields) < 2:
                continue
            try:
                v = float(fields[1])
            except ValueError:
                continue  # header
            ids.append(fields[0])
            vals.append(v)
    arr = np.asarray(vals, dtype=float)
    if order is None:
        return arr
    return arr[match_labels(list(order), ids)]


def jsonable(obj: Any) -> Any:
    if isinstance(obj, Mapping):
        return {str(k): jsonable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [jsonable(v) for v in obj]
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, np.generic):
        return obj.item()
    return obj
