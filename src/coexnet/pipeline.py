"""
End-to-end weighted co-expression network analysis.

Stages (each a function of its predecessor plus configuration):

    expression → soft-threshold table (advisory) → adjacency → TOM
      → module detection (cut + merge) → eigengenes
      → module-trait correlation / module membership / gene significance
      → hub genes of the configured modules

The soft-threshold power and the modules examined for hub genes are
configuration: the pipeline reports the scale-free fit table and flags
module-trait associations, but never picks either on its own. Advisories
(ConfigurationWarning) are emitted through the warnings module and also
collected on the result.

Examples:
    >>> from coexnet.pipeline import NetworkConfig, run_network_analysis
    >>> config = NetworkConfig(power=12, trait="subset_CD4", significant_modules=["turquoise"])
    >>> result = run_network_analysis(expression, traits, config, analysis_id="CD4")
    >>> result.hubs[("CD4", 1)].hubs.head()
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from coexnet.analysis.hubs import HubGeneResult, select_hub_genes
from coexnet.analysis.traits import (
    MembershipStats,
    ModuleTraitStats,
    gene_module_table,
    gene_significance,
    module_membership,
    module_trait_correlation,
)
from coexnet.core.errors import (
    ConfigurationWarning,
    DegenerateInputError,
    InsufficientSamplesError,
)
from coexnet.core.expression import ExpressionMatrix, TraitMatrix
from coexnet.modules.detection import DetectionResult, ModuleAssignment, ModuleDetector
from coexnet.network.adjacency import NetworkType, adjacency
from coexnet.network.soft_threshold import (
    DEFAULT_POWERS,
    DEFAULT_R2_CUT,
    MIN_BREAKS,
    SoftThresholdResult,
    check_power,
    pick_soft_threshold,
)
from coexnet.network.tom import blockwise_tom_from_expression, tom_similarity
from coexnet.stats.correlation import MIN_PAIRED_SAMPLES, CorrelationStrategy, pearson_correlation
from coexnet.utils.blocks import DEFAULT_MAX_BLOCK_MEMORY

logger = logging.getLogger(__name__)

__all__ = [
    'NetworkConfig',
    'NetworkAnalysisResult',
    'run_network_analysis',
]


@dataclass
class NetworkConfig:
    """
    Settings for one network analysis run.

    Attributes:
        power: Soft-threshold power used to build the network (required)
        powers: Candidate powers for the scale-free fit report (None skips it)
        network_type: 'signed', 'unsigned' or 'signed hybrid'
        n_breaks: Connectivity bins for the scale-free fit
        r2_cut: Target signed scale-free R² for the advisory power
        max_mean_k: Optional mean connectivity ceiling for the advisory power
        min_module_size: Minimum genes per module
        deep_split: Branch cut sensitivity 0-4
        cut_height: Maximum joining height for the branch cut (None: automatic)
        merge_cut_height: Eigengene dissimilarity below which modules merge
        kme_threshold: Minimum |kME| for hub genes
        kme_pvalue: Maximum kME p-value for hub genes
        significant_modules: Modules (labels or names) examined for hub genes
        trait: Trait column used for gene significance (None: the only trait)
        block_size: Genes per block for blockwise stages (None: from memory budget)
        max_block_memory: Memory budget per block in bytes
        n_workers: Threads for blockwise stages
        streamed_tom: Compute TOM from expression without holding the adjacency
        tom_memmap: Optional file backing the TOM matrix (numpy.memmap)
        progress: Show tqdm progress bars for blockwise stages
        correlation: Correlation strategy for every correlation stage
        tom: TOM strategy applied to the adjacency matrix
    """
    power: Optional[float] = None
    powers: Optional[Sequence[float]] = DEFAULT_POWERS
    network_type: str = NetworkType.SIGNED.value
    n_breaks: int = 10
    r2_cut: float = DEFAULT_R2_CUT
    max_mean_k: Optional[float] = None
    min_module_size: int = 30
    deep_split: float = 2
    cut_height: Optional[float] = None
    merge_cut_height: float = 0.25
    kme_threshold: float = 0.7
    kme_pvalue: float = 0.05
    significant_modules: List[Union[int, str]] = field(default_factory=list)
    trait: Optional[str] = None
    block_size: Optional[int] = None
    max_block_memory: int = DEFAULT_MAX_BLOCK_MEMORY
    n_workers: int = 1
    streamed_tom: bool = False
    tom_memmap: Optional[Path] = None
    progress: bool = False
    correlation: CorrelationStrategy = pearson_correlation
    tom: Callable[..., np.ndarray] = tom_similarity

    def validate(self) -> None:
        """
        Check value ranges.

        Raises:
            ValueError: On the first invalid setting
        """
        if self.power is None:
            raise ValueError(
                "Soft-threshold power must be configured; run the scale-free fit "
                "report (coexnet power) to choose one"
            )
        if not self.power > 0:
            raise ValueError(f"power must be positive, got {self.power}")
        if self.powers is not None:
            if len(self.powers) == 0 or any(not p > 0 for p in self.powers):
                raise ValueError(f"powers must be a non-empty list of positive values, got {self.powers}")
        NetworkType.parse(self.network_type)
        if self.n_breaks < MIN_BREAKS:
            raise ValueError(f"n_breaks must be >= {MIN_BREAKS}, got {self.n_breaks}")
        if not -1 <= self.r2_cut <= 1:
            raise ValueError(f"r2_cut must be in [-1, 1], got {self.r2_cut}")
        if self.max_mean_k is not None and self.max_mean_k <= 0:
            raise ValueError(f"max_mean_k must be positive, got {self.max_mean_k}")
        if self.min_module_size < 1:
            raise ValueError(f"min_module_size must be >= 1, got {self.min_module_size}")
        if not 0 <= self.deep_split <= 4:
            raise ValueError(f"deep_split must be between 0 and 4, got {self.deep_split}")
        if self.cut_height is not None and not 0 < self.cut_height <= 1:
            raise ValueError(f"cut_height must be in (0, 1], got {self.cut_height}")
        if not 0 <= self.merge_cut_height <= 2:
            raise ValueError(f"merge_cut_height must be in [0, 2], got {self.merge_cut_height}")
        if not 0 <= self.kme_threshold <= 1:
            raise ValueError(f"kme_threshold must be in [0, 1], got {self.kme_threshold}")
        if not 0 < self.kme_pvalue <= 1:
            raise ValueError(f"kme_pvalue must be in (0, 1], got {self.kme_pvalue}")
        if self.block_size is not None and self.block_size < 1:
            raise ValueError(f"block_size must be >= 1, got {self.block_size}")
        if self.max_block_memory < 1:
            raise ValueError(f"max_block_memory must be positive, got {self.max_block_memory}")
        if self.n_workers < 1:
            raise ValueError(f"n_workers must be >= 1, got {self.n_workers}")

    def to_dict(self) -> Dict[str, Any]:
        """Serializable settings (strategies recorded by name)."""
        return {
            'power': self.power,
            'powers': list(self.powers) if self.powers is not None else None,
            'network_type': NetworkType.parse(self.network_type).value,
            'n_breaks': self.n_breaks,
            'r2_cut': self.r2_cut,
            'max_mean_k': self.max_mean_k,
            'min_module_size': self.min_module_size,
            'deep_split': self.deep_split,
            'cut_height': self.cut_height,
            'merge_cut_height': self.merge_cut_height,
            'kme_threshold': self.kme_threshold,
            'kme_pvalue': self.kme_pvalue,
            'significant_modules': list(self.significant_modules),
            'trait': self.trait,
            'block_size': self.block_size,
            'n_workers': self.n_workers,
            'streamed_tom': self.streamed_tom,
            'correlation': getattr(self.correlation, '__name__', repr(self.correlation)),
            'tom': getattr(self.tom, '__name__', repr(self.tom)),
        }


@dataclass
class NetworkAnalysisResult:
    """
    Everything one analysis run produces.

    Attributes:
        analysis_id: Identifier of the run (e.g. cell subset)
        config: Settings used
        n_samples: Samples in the analysis
        soft_threshold: Scale-free fit table and advisory power (None if skipped)
        detection: Dendrogram, assignment and eigengenes
        module_traits: Module-trait statistics (None without traits)
        membership: kME of every gene against every module
        gene_significance: GS table for the selected trait (None without traits)
        gene_table: Per-gene summary
        hubs: Hub results keyed by (analysis_id, module label)
        trait: Trait used for gene significance
        warnings: ConfigurationWarning instances raised during the run
    """
    analysis_id: str
    config: NetworkConfig
    n_samples: int
    soft_threshold: Optional[SoftThresholdResult]
    detection: DetectionResult
    module_traits: Optional[ModuleTraitStats]
    membership: MembershipStats
    gene_significance: Optional[pd.DataFrame]
    gene_table: pd.DataFrame
    hubs: Dict[Tuple[str, int], HubGeneResult] = field(default_factory=dict)
    trait: Optional[str] = None
    warnings: List[Warning] = field(default_factory=list)

    @property
    def assignment(self) -> ModuleAssignment:
        return self.detection.assignment

    @property
    def eigengenes(self) -> pd.DataFrame:
        return self.detection.eigengenes.eigengenes

    def significant_modules(
        self,
        alpha: float = 0.05,
        trait: Optional[str] = None,
        use_qvalue: bool = False,
    ) -> List[int]:
        """
        Modules whose eigengene is associated with a trait.

        A helper for choosing NetworkConfig.significant_modules; the engine
        does not act on it.

        Args:
            alpha: Significance level
            trait: Trait column (default: the trait used for gene significance)
            use_qvalue: Compare BH-adjusted instead of raw p-values

        Returns:
            Module labels ordered by p-value
        """
        if self.module_traits is None:
            return []
        trait = trait or self.trait
        table = self.module_traits.qvalue if use_qvalue else self.module_traits.pvalue
        if trait not in table.columns:
            raise KeyError(f"Trait '{trait}' not in module-trait table: {list(table.columns)}")
        column_labels = dict(zip(self.eigengenes.columns, self.detection.eigengenes.labels))
        pvalues = table[trait]
        selected = pvalues[pvalues < alpha].sort_values(kind='mergesort')
        return [column_labels[name] for name in selected.index]

    def summary(self) -> Dict[str, Any]:
        """JSON-serializable overview of the run."""
        assignment = self.assignment
        sizes = assignment.sizes()
        return {
            'analysis_id': self.analysis_id,
            'n_samples': self.n_samples,
            'n_genes': len(assignment.gene_ids),
            'config': self.config.to_dict(),
            'suggested_power': (
                self.soft_threshold.suggested_power if self.soft_threshold is not None else None
            ),
            'n_modules_initial': self.detection.n_initial,
            'n_modules': len(assignment.modules),
            'n_unassigned': assignment.n_unassigned,
            'modules': {
                assignment.name(label): int(sizes.loc[label]) for label in assignment.modules
            },
            'merge_map': {str(pre): post for pre, post in assignment.merge_map.items()},
            'trait': self.trait,
            'hubs': {
                result.module_name: result.n_hubs for result in self.hubs.values()
            },
            'warnings': [str(w) for w in self.warnings],
        }


def _as_trait_matrix(traits: Union[TraitMatrix, pd.DataFrame, None]) -> Optional[TraitMatrix]:
    if traits is None or isinstance(traits, TraitMatrix):
        return traits
    return TraitMatrix.from_frame(traits)


def _select_trait(traits: Optional[TraitMatrix], configured: Optional[str]) -> Optional[str]:
    if traits is None:
        return None
    if configured is not None:
        if configured not in traits.trait_names:
            raise ValueError(
                f"Configured trait '{configured}' not found. Available: {list(traits.trait_names)}"
            )
        return configured
    if len(traits.trait_names) == 1:
        return str(traits.trait_names[0])
    raise ValueError(
        f"Several traits available ({list(traits.trait_names)}); set NetworkConfig.trait "
        f"to choose the one used for gene significance"
    )


def _validate_inputs(expression: ExpressionMatrix) -> None:
    if expression.n_samples < MIN_PAIRED_SAMPLES:
        raise InsufficientSamplesError(
            f"Need at least {MIN_PAIRED_SAMPLES} samples for correlation, got {expression.n_samples}"
        )
    expression.validate_finite(stage="input")
    constant = expression.zero_variance_genes()
    if len(constant) > 0:
        raise DegenerateInputError(
            f"{len(constant)} zero-variance gene(s) must be filtered before network "
            f"construction: {constant[:10].tolist()}",
            stage="input",
        )


def _topological_overlap(expression: ExpressionMatrix, config: NetworkConfig) -> np.ndarray:
    n = expression.n_genes
    out = None
    if config.tom_memmap is not None:
        out = np.memmap(Path(config.tom_memmap), dtype=np.float64, mode='w+', shape=(n, n))
        logger.info(f"TOM backed by memory-mapped file {config.tom_memmap}")

    if config.streamed_tom:
        return blockwise_tom_from_expression(
            expression,
            config.power,
            network_type=config.network_type,
            block_size=config.block_size,
            n_workers=config.n_workers,
            out=out,
            correlation=config.correlation,
            progress=config.progress,
            max_block_memory=config.max_block_memory,
        )

    adj = adjacency(expression, config.power, config.network_type, correlation=config.correlation)
    return config.tom(
        adj,
        block_size=config.block_size,
        n_workers=config.n_workers,
        out=out,
        progress=config.progress,
        max_block_memory=config.max_block_memory,
    )


def run_network_analysis(
    expression: ExpressionMatrix,
    traits: Union[TraitMatrix, pd.DataFrame, None],
    config: NetworkConfig,
    analysis_id: str = "analysis",
) -> NetworkAnalysisResult:
    """
    Run the full engine on one expression matrix.

    Args:
        expression: Samples × genes variance-stabilized expression (filtered)
        traits: Samples × traits numeric table (rows aligned by sample id), or None
        config: Analysis settings
        analysis_id: Identifier recorded on every output

    Returns:
        NetworkAnalysisResult

    Raises:
        ValueError: Invalid configuration or misaligned inputs
        InsufficientSamplesError: Fewer than 3 samples
        DegenerateInputError: Non-finite values or zero-variance genes/traits
        UnknownModuleError: A configured significant module has no genes
    """
    config.validate()
    traits = _as_trait_matrix(traits)
    if traits is not None:
        traits = traits.align_to(expression)
    trait = _select_trait(traits, config.trait)

    logger.info(
        f"[{analysis_id}] Network analysis: {expression.n_samples} samples × "
        f"{expression.n_genes} genes, power={config.power}, "
        f"{NetworkType.parse(config.network_type).value}"
    )
    _validate_inputs(expression)

    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always", ConfigurationWarning)

        soft_threshold = None
        if config.powers is not None:
            soft_threshold = pick_soft_threshold(
                expression,
                powers=config.powers,
                network_type=config.network_type,
                n_breaks=config.n_breaks,
                block_size=config.block_size,
                correlation=config.correlation,
                n_workers=config.n_workers,
                r2_cut=config.r2_cut,
                max_mean_k=config.max_mean_k,
                progress=config.progress,
            )
            check_power(soft_threshold.table, config.power, r2_cut=config.r2_cut)

        tom = _topological_overlap(expression, config)
        detection = ModuleDetector.from_config(config).detect(expression, tom)
        assignment = detection.assignment
        eigengenes = detection.eigengenes

        if assignment.modules:
            membership = module_membership(expression, eigengenes, correlation=config.correlation)
        else:
            logger.warning(f"[{analysis_id}] No modules detected; membership tables are empty")
            membership = MembershipStats(
                kme=pd.DataFrame(index=pd.Index(expression.gene_ids, name='gene_id')),
                pvalue=pd.DataFrame(index=pd.Index(expression.gene_ids, name='gene_id')),
            )

        module_traits = None
        significance = None
        if traits is not None:
            if assignment.modules:
                module_traits = module_trait_correlation(
                    eigengenes, traits, correlation=config.correlation
                )
            significance = gene_significance(
                expression, traits, trait_name=trait, correlation=config.correlation
            )

        table = gene_module_table(assignment, membership, significance)

        hubs: Dict[Tuple[str, int], HubGeneResult] = {}
        if config.significant_modules:
            selected = select_hub_genes(
                assignment,
                membership,
                significance,
                config.significant_modules,
                kme_threshold=config.kme_threshold,
                kme_pvalue=config.kme_pvalue,
                analysis_id=analysis_id,
            )
            hubs = {result.key: result for result in selected.values()}

    collected = []
    for record in caught:
        # Re-issue so caller-side filters and handlers still see every warning
        warnings.warn_explicit(record.message, record.category, record.filename, record.lineno)
        if issubclass(record.category, ConfigurationWarning):
            collected.append(record.message)

    result = NetworkAnalysisResult(
        analysis_id=analysis_id,
        config=config,
        n_samples=expression.n_samples,
        soft_threshold=soft_threshold,
        detection=detection,
        module_traits=module_traits,
        membership=membership,
        gene_significance=significance,
        gene_table=table,
        hubs=hubs,
        trait=trait,
        warnings=collected,
    )
    logger.info(
        f"[{analysis_id}] Done: {len(assignment.modules)} module(s), "
        f"{sum(r.n_hubs for r in hubs.values())} hub gene(s), {len(collected)} advisory warning(s)"
    )
    return result
