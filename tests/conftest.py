"""
Pytest configuration and shared fixtures for network engine tests.

Provides synthetic expression data with planted co-expression modules and
the small hand-checkable matrix used for exact network values.
"""

import numpy as np
import pandas as pd
import pytest

from coexnet.core.expression import ExpressionMatrix, TraitMatrix


def generate_module_expression(
    module_sizes=(20, 14),
    n_samples: int = 40,
    loading: float = 0.9,
    seed: int = 7,
):
    """
    Generate expression with planted co-expression modules.

    Args:
        module_sizes: Genes per planted module
        n_samples: Number of samples
        loading: Weight of the module pattern in every gene (0-1)
        seed: Random seed for reproducibility

    Returns:
        (ExpressionMatrix, planted labels 1..m per gene, samples × m pattern array)

    Design:
        - Every gene is loading·pattern + sqrt(1 − loading²)·noise around a
          VST-like baseline, so within-module correlation is ≈ loading²
        - Independent patterns keep modules apart (no eigengene merging)
        - No background genes, so every gene belongs to a module
    """
    rng = np.random.default_rng(seed)
    patterns = rng.standard_normal((n_samples, len(module_sizes)))

    columns = []
    labels = []
    for module_idx, size in enumerate(module_sizes):
        noise = rng.standard_normal((n_samples, size))
        block = loading * patterns[:, [module_idx]] + np.sqrt(1.0 - loading ** 2) * noise
        columns.append(8.0 + block)
        labels.extend([module_idx + 1] * size)

    data = np.hstack(columns)
    gene_ids = pd.Index([f"GENE_{i:04d}" for i in range(data.shape[1])])
    sample_ids = pd.Index([f"S{i:03d}" for i in range(n_samples)])
    expression = ExpressionMatrix(data=data, sample_ids=sample_ids, gene_ids=gene_ids)
    return expression, np.array(labels), patterns


@pytest.fixture
def planted():
    """Two planted modules (20 and 14 genes) over 40 samples."""
    return generate_module_expression()


@pytest.fixture
def planted_traits(planted):
    """Case/control indicator traits following the first module's pattern."""
    expression, _, patterns = planted
    group = np.where(patterns[:, 0] > np.median(patterns[:, 0]), "CASE", "CTRL")
    values = pd.Series(group, index=expression.sample_ids, name="group")
    return TraitMatrix.from_categorical(values)


@pytest.fixture
def tiny_expression():
    """
    3 samples × 4 genes with two perfectly correlated pairs.

    g1/g2 and g3/g4 correlate at 1, pairs across at 0, so a signed network
    at power 1 has adjacency 1 within pairs and 0.5 across.
    """
    data = np.array([
        [1.0, 2.0, 1.0, 3.0],
        [2.0, 4.0, -2.0, -3.0],
        [3.0, 6.0, 1.0, 3.0],
    ])
    return ExpressionMatrix(
        data=data,
        sample_ids=pd.Index(["S1", "S2", "S3"]),
        gene_ids=pd.Index(["g1", "g2", "g3", "g4"]),
    )


def save_expression_csv(expression: ExpressionMatrix, path):
    """Write an ExpressionMatrix genes × samples, the layout of VST exports."""
    expression.to_frame().T.to_csv(path)
    return path
