"""Genetics module for acevo.

Implements the 3-locus continuous-allele architecture:
  - One locus per trait: w0 (locus 0), theta0 (locus 1), d (locus 2)
  - Additive diploid model: genotypic value = maternal + paternal allele
  - Mendelian segregation with locus-to-locus recombination switches
  - Per-locus mutation with a standardized increment of selectable shape
    (uniform, normal or Laplace), clamped to per-locus bounds

RNG draw order is part of the operator contract (tests pin it down):
  Diplotype.get_gamete
    1. one U(0,1) for locus 0: maternal iff u < rho[0]
    2. one U(0,1) per locus 1..N_LOCI-1: switch source iff u < rho[i]
    3. Gamete.mutate on the new gamete
  Gamete.mutate, for each locus i in order with mut_rate[i] > 0
    1. one U(0,1): mutate iff u < mut_rate[i]
    2. if mutating, the draws of MutationShape.std_incr
  Loci with mut_rate[i] == 0 consume no draws.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Union

import numpy as np

from acevo.types import N_LOCI, TRAIT_NAMES, genotype_col_heads


ArrayLike = Union[float, Sequence[float], np.ndarray]


# ═══════════════════════════════════════════════════════════════════════
# MUTATIONAL INCREMENTS
# ═══════════════════════════════════════════════════════════════════════


class MutationShape:
    """Standardized (mean 0, variance 1) mutational increment generator."""

    name = ''

    def std_incr(self, rng: np.random.Generator) -> float:
        raise NotImplementedError


class UniformIncrement(MutationShape):
    """Rectangular increments on [-√3, √3] (variance one)."""

    name = 'uniform'
    half_width = float(np.sqrt(3.0))

    def std_incr(self, rng: np.random.Generator) -> float:
        return float(rng.uniform(-self.half_width, self.half_width))


class NormalIncrement(MutationShape):
    """Standard normal increments."""

    name = 'normal'

    def std_incr(self, rng: np.random.Generator) -> float:
        return float(rng.standard_normal())


class LaplaceIncrement(MutationShape):
    """Laplace (bi-exponential) increments.

    A fair coin picks the sign, the magnitude is exponential with rate √2,
    which gives variance one.
    """

    name = 'laplace'
    scale = 1.0 / float(np.sqrt(2.0))

    def std_incr(self, rng: np.random.Generator) -> float:
        positive = rng.random() < 0.5
        magnitude = float(rng.exponential(self.scale))
        return magnitude if positive else -magnitude


MUTATION_SHAPES = {
    cls.name: cls for cls in (UniformIncrement, NormalIncrement, LaplaceIncrement)
}


def make_mutation_shape(name: str) -> MutationShape:
    """Instantiate a mutation shape by name ('uniform', 'normal', 'laplace').

    Raises:
        ValueError: If the name is unknown.
    """
    try:
        return MUTATION_SHAPES[name]()
    except KeyError:
        raise ValueError(
            f"mutation shape must be one of {sorted(MUTATION_SHAPES)}, "
            f"got '{name}'"
        ) from None


# ═══════════════════════════════════════════════════════════════════════
# MUTATION / RECOMBINATION PARAMETERS
# ═══════════════════════════════════════════════════════════════════════


def _locus_array(value: ArrayLike) -> np.ndarray:
    """Broadcast a scalar or sequence to a float64 (N_LOCI,) array."""
    arr = np.asarray(value, dtype=np.float64)
    if arr.ndim == 0:
        return np.full(N_LOCI, float(arr))
    if arr.shape != (N_LOCI,):
        raise ValueError(f"expected {N_LOCI} per-locus values, got shape {arr.shape}")
    return arr.copy()


@dataclass
class MutRec:
    """Parameters for mutation, segregation and recombination.

    rho[0] is the probability that the allele at locus 0 comes from the
    maternal gamete (0.5 for Mendelian segregation); rho[i] for i > 0 is the
    probability of recombination between locus i-1 and locus i.

    Each worker owns its own MutRec; the random generator is passed
    separately to every operation.
    """
    mut_rate: np.ndarray = field(default_factory=lambda: np.zeros(N_LOCI))
    SD: np.ndarray = field(default_factory=lambda: np.zeros(N_LOCI))
    max_val: np.ndarray = field(default_factory=lambda: np.full(N_LOCI, np.inf))
    min_val: np.ndarray = field(default_factory=lambda: np.full(N_LOCI, -np.inf))
    rho: np.ndarray = field(default_factory=lambda: np.full(N_LOCI, 0.5))
    shape: MutationShape = field(default_factory=NormalIncrement)

    def __post_init__(self):
        self.mut_rate = _locus_array(self.mut_rate)
        self.SD = _locus_array(self.SD)
        self.max_val = _locus_array(self.max_val)
        self.min_val = _locus_array(self.min_val)
        self.rho = _locus_array(self.rho)

    def set_mut_rate(self, m: ArrayLike) -> None:
        self.mut_rate = _locus_array(m)

    def set_rho(self, r: ArrayLike) -> None:
        self.rho = _locus_array(r)

    def std_incr(self, rng: np.random.Generator) -> float:
        return self.shape.std_incr(rng)

    @classmethod
    def from_config(cls, genetics_cfg) -> 'MutRec':
        """Build from a GeneticsSection."""
        return cls(
            mut_rate=genetics_cfg.mut_rate,
            SD=genetics_cfg.SD,
            max_val=genetics_cfg.max_val,
            min_val=genetics_cfg.min_val,
            rho=genetics_cfg.rho,
            shape=make_mutation_shape(genetics_cfg.mutation_shape),
        )


# ═══════════════════════════════════════════════════════════════════════
# GAMETE
# ═══════════════════════════════════════════════════════════════════════


class Gamete:
    """One haploid set of allelic values, one per locus."""

    __slots__ = ('gamdat',)

    def __init__(self, values: Optional[ArrayLike] = None):
        if values is None:
            self.gamdat = np.zeros(N_LOCI, dtype=np.float64)
        else:
            self.gamdat = _locus_array(values)

    def value(self) -> np.ndarray:
        return self.gamdat

    def __getitem__(self, i: int) -> float:
        return float(self.gamdat[i])

    def __setitem__(self, i: int, v: float) -> None:
        self.gamdat[i] = v

    def __len__(self) -> int:
        return N_LOCI

    def __eq__(self, other) -> bool:
        if not isinstance(other, Gamete):
            return NotImplemented
        return bool(np.array_equal(self.gamdat, other.gamdat))

    def __repr__(self) -> str:
        return f"Gamete({self.gamdat.tolist()})"

    def copy(self) -> 'Gamete':
        return Gamete(self.gamdat)

    def mutate(self, mr: MutRec, rng: np.random.Generator) -> None:
        """Mutate in place; see the module docstring for the draw order."""
        for i in range(N_LOCI):
            if mr.mut_rate[i] > 0:
                if rng.random() < mr.mut_rate[i]:
                    # SD[i]**2 is the variance of mutational increments
                    allele = self.gamdat[i] + mr.SD[i] * mr.std_incr(rng)
                    if allele > mr.max_val[i]:
                        allele = mr.max_val[i]
                    elif allele < mr.min_val[i]:
                        allele = mr.min_val[i]
                    self.gamdat[i] = allele


# ═══════════════════════════════════════════════════════════════════════
# GENOTYPES
# ═══════════════════════════════════════════════════════════════════════


class Diplotype:
    """Diploid genotype: a maternal and a paternal gamete."""

    __slots__ = ('mat_gam', 'pat_gam')

    def __init__(self, mat_gam: Optional[Gamete] = None,
                 pat_gam: Optional[Gamete] = None):
        if mat_gam is None:
            mat_gam = Gamete()
        if pat_gam is None:
            # a single gamete makes a homozygote
            pat_gam = mat_gam
        self.mat_gam = mat_gam.copy()
        self.pat_gam = pat_gam.copy()

    def assign(self, mat_gam: Gamete, pat_gam: Gamete) -> None:
        self.mat_gam = mat_gam.copy()
        self.pat_gam = pat_gam.copy()

    def value(self) -> np.ndarray:
        """Genotypic value: elementwise sum of the two gametes."""
        return self.mat_gam.value() + self.pat_gam.value()

    def mat_val(self) -> np.ndarray:
        return self.mat_gam.value()

    def pat_val(self) -> np.ndarray:
        return self.pat_gam.value()

    def get_gamete(self, mr: MutRec, rng: np.random.Generator,
                   rho: Optional[ArrayLike] = None) -> Gamete:
        """Form a new gamete by segregation, recombination and mutation.

        Args:
            mr: Mutation/recombination parameters.
            rng: Random generator (consumed in the documented order).
            rho: Optional per-locus segregation/recombination rates
                overriding ``mr.rho`` (for evolving recombination rates).
        """
        rhov = mr.rho if rho is None else _locus_array(rho)
        mat_data = self.mat_gam.gamdat
        pat_data = self.pat_gam.gamdat
        gam = Gamete()
        mat = rng.random() < rhov[0]
        gam.gamdat[0] = mat_data[0] if mat else pat_data[0]
        for i in range(1, N_LOCI):
            if rng.random() < rhov[i]:
                mat = not mat
            gam.gamdat[i] = mat_data[i] if mat else pat_data[i]
        gam.mutate(mr, rng)
        return gam

    def copy(self) -> 'Diplotype':
        return Diplotype(self.mat_gam, self.pat_gam)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Diplotype):
            return NotImplemented
        return self.mat_gam == other.mat_gam and self.pat_gam == other.pat_gam

    def __repr__(self) -> str:
        return f"Diplotype({self.mat_gam!r}, {self.pat_gam!r})"

    def to_fields(self) -> List[float]:
        return self.mat_gam.gamdat.tolist() + self.pat_gam.gamdat.tolist()

    @classmethod
    def from_fields(cls, values: Sequence[float]) -> 'Diplotype':
        return cls(Gamete(values[:N_LOCI]), Gamete(values[N_LOCI:2 * N_LOCI]))

    @staticmethod
    def col_heads() -> str:
        return '\t'.join(genotype_col_heads())


class Haplotype:
    """Haploid genotype: one gamete, inherited with mutation only."""

    __slots__ = ('gam',)

    def __init__(self, gam: Optional[Gamete] = None):
        self.gam = Gamete() if gam is None else gam.copy()

    def value(self) -> np.ndarray:
        return self.gam.value()

    def get_gamete(self, mr: MutRec, rng: np.random.Generator) -> Gamete:
        new_gam = self.gam.copy()
        new_gam.mutate(mr, rng)
        return new_gam

    def copy(self) -> 'Haplotype':
        return Haplotype(self.gam)

    def to_fields(self) -> List[float]:
        return self.gam.gamdat.tolist()

    @staticmethod
    def col_heads() -> str:
        return '\t'.join(genotype_col_heads(('Loc',)))


# ═══════════════════════════════════════════════════════════════════════
# TRAIT DIAGNOSTICS
# ═══════════════════════════════════════════════════════════════════════


@dataclass
class TraitDiagnostics:
    """Summary statistics of genotypic traits for a set of individuals."""
    n: int = 0
    mean_value: np.ndarray = field(default_factory=lambda: np.zeros(N_LOCI))
    var_value: np.ndarray = field(default_factory=lambda: np.zeros(N_LOCI))
    mean_payoff: float = 0.0
    mean_theta: float = 0.0

    def trait_mean(self, name: str) -> float:
        return float(self.mean_value[TRAIT_NAMES.index(name)])


def compute_trait_diagnostics(individuals: Iterable) -> TraitDiagnostics:
    """Mean and variance of genotypic values, plus mean payoff and theta.

    Args:
        individuals: Iterable of Individual objects (dead ones are skipped).

    Returns:
        TraitDiagnostics; all zeros if there are no alive individuals.
    """
    alive = [ind for ind in individuals if ind.alive]
    diag = TraitDiagnostics(n=len(alive))
    if not alive:
        return diag

    values = np.array([ind.genotype.value() for ind in alive])  # (n, N_LOCI)
    diag.mean_value = values.mean(axis=0)
    diag.var_value = values.var(axis=0)
    diag.mean_payoff = float(np.mean([ind.phenotype.payoff for ind in alive]))
    diag.mean_theta = float(np.mean([ind.phenotype.theta for ind in alive]))
    return diag
