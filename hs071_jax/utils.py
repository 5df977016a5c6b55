import numpy as np

from hs071_jax.types import IndexStyle, Sparsity


def triplet_to_dense(
    structure: Sparsity,
    values,
    shape: tuple[int, int],
    symmetric: bool = False,
    index_style: int = IndexStyle.C,
) -> np.ndarray:
    """Scatter triplet values into a dense matrix.

    With ``symmetric=True`` the structure is read as one triangle of a
    symmetric matrix and mirrored; diagonal entries are counted once.
    Repeated indices are summed.
    """
    rows = np.asarray(structure.rows) - index_style
    cols = np.asarray(structure.cols) - index_style
    values = np.asarray(values, dtype=float)
    dense = np.zeros(shape)
    np.add.at(dense, (rows, cols), values)
    if symmetric:
        off_diagonal = rows != cols
        np.add.at(dense, (cols[off_diagonal], rows[off_diagonal]), values[off_diagonal])
    return dense
