"""
Writers for network analysis results.

Output layout for analysis id <id> in the output directory:

    <id>_soft_threshold.csv        scale-free fit table (when computed)
    <id>_module_assignment.csv     gene, module, display name, pre-merge module
    <id>_eigengenes.csv            samples × module eigengenes
    <id>_module_trait_cor.csv      modules × traits correlation
    <id>_module_trait_pvalue.csv   modules × traits p-values
    <id>_module_trait_qvalue.csv   modules × traits BH q-values
    <id>_gene_module_table.csv     per-gene module, kME and GS
    <id>_<module>_hub_genes.csv    hub genes of each examined module
    <id>_<module>_all_genes.txt    every gene of each examined module (one per line)
    <id>_summary.json              run overview

The per-module gene lists are the inputs of downstream enrichment analysis
(hub list against the all-genes background). Every file is written
atomically, so a failed run never leaves partial tables.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Dict

from coexnet.pipeline import NetworkAnalysisResult
from coexnet.utils.fileio import atomic_write_frame, atomic_write_json, atomic_write_text

logger = logging.getLogger(__name__)

__all__ = ['write_network_results', 'write_soft_threshold_table']

_UNSAFE = re.compile(r'[^A-Za-z0-9._-]+')


def _safe(name: str) -> str:
    return _UNSAFE.sub('_', str(name)).strip('_') or 'analysis'


def write_soft_threshold_table(table, path: Path) -> Path:
    """Write a soft-threshold table as CSV."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    atomic_write_frame(path, table, index=False)
    logger.info(f"Wrote soft-threshold table to {path}")
    return path


def write_network_results(result: NetworkAnalysisResult, output_dir: Path) -> Dict[str, Path]:
    """
    Write every table of a network analysis run.

    Args:
        result: Output of run_network_analysis
        output_dir: Directory to write into (created if missing)

    Returns:
        Mapping output kind → written path (hub/all-gene entries are keyed
        '<module>_hub_genes' and '<module>_all_genes')

    Raises:
        OSError: If the directory is not writable
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    prefix = _safe(result.analysis_id)
    written: Dict[str, Path] = {}

    def target(kind: str) -> Path:
        path = output_dir / f"{prefix}_{kind}"
        written[kind.rsplit('.', 1)[0]] = path
        return path

    if result.soft_threshold is not None:
        atomic_write_frame(target("soft_threshold.csv"), result.soft_threshold.table)

    atomic_write_frame(target("module_assignment.csv"), result.assignment.to_frame())
    atomic_write_frame(target("eigengenes.csv"), result.eigengenes, index=True)

    if result.module_traits is not None:
        atomic_write_frame(target("module_trait_cor.csv"), result.module_traits.correlation, index=True)
        atomic_write_frame(target("module_trait_pvalue.csv"), result.module_traits.pvalue, index=True)
        atomic_write_frame(target("module_trait_qvalue.csv"), result.module_traits.qvalue, index=True)

    atomic_write_frame(target("gene_module_table.csv"), result.gene_table)

    for hub_result in result.hubs.values():
        module = _safe(hub_result.module_name)
        atomic_write_frame(target(f"{module}_hub_genes.csv"), hub_result.hubs)
        genes = "".join(f"{gene}\n" for gene in hub_result.genes)
        atomic_write_text(target(f"{module}_all_genes.txt"), genes)

    atomic_write_json(target("summary.json"), result.summary())

    logger.info(f"Wrote {len(written)} result file(s) for '{result.analysis_id}' to {output_dir}")
    return written
