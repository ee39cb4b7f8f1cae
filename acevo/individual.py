"""Individuals: genotype + phenotype + subpopulation number + liveness.

An individual constructed from gametes is alive; a default-constructed
individual is a "dead" placeholder, as used for the empty slots of the
arena containers in acevo.population.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np

from acevo.genetics import Diplotype, Gamete, MutRec
from acevo.phenotype import Phenotype, parse_bool
from acevo.types import N_LOCI, N_RECORD_FIELDS, individual_col_heads


@dataclass
class Individual:
    """One member of the metapopulation."""
    genotype: Diplotype = field(default_factory=Diplotype)
    phenotype: Phenotype = field(default_factory=Phenotype)
    spn: int = 0
    alive: bool = False

    @classmethod
    def from_gametes(cls, mat_gam: Gamete, pat_gam: Optional[Gamete] = None,
                     spn: int = 0, female: bool = True) -> 'Individual':
        """Newborn individual; a single gamete gives a homozygote."""
        genotype = Diplotype(mat_gam, pat_gam)
        return cls(
            genotype=genotype,
            phenotype=Phenotype.from_genotype(genotype, female),
            spn=spn,
            alive=True,
        )

    def get_gamete(self, mr: MutRec, rng: np.random.Generator,
                   rho=None) -> Gamete:
        return self.genotype.get_gamete(mr, rng, rho)

    def set_alive(self) -> None:
        self.alive = True

    def set_dead(self) -> None:
        self.alive = False

    @property
    def female(self) -> bool:
        return self.phenotype.female

    def copy(self) -> 'Individual':
        return Individual(self.genotype.copy(), self.phenotype.copy(),
                          self.spn, self.alive)

    # ── Flat record (population file row) ───────────────────────────

    def to_fields(self) -> List[str]:
        values = self.genotype.to_fields() + self.phenotype.to_fields()
        values += [self.spn, self.alive]
        return [format_field(v) for v in values]

    @classmethod
    def from_fields(cls, values: Sequence[str]) -> 'Individual':
        """Parse one population-file row split into fields.

        Raises:
            ValueError: On a wrong field count or an unparsable field.
        """
        if len(values) != N_RECORD_FIELDS:
            raise ValueError(
                f"expected {N_RECORD_FIELDS} fields, got {len(values)}"
            )
        n_gen = 2 * N_LOCI
        genotype = Diplotype.from_fields([float(v) for v in values[:n_gen]])
        phenotype = Phenotype.from_fields(values[n_gen:-2])
        spn = int(values[-2])
        if spn < 0:
            raise ValueError(f"negative subpopulation number: {spn}")
        return cls(genotype, phenotype, spn, parse_bool(values[-1]))

    @staticmethod
    def col_heads() -> str:
        return '\t'.join(individual_col_heads())


def format_field(v) -> str:
    """Text form of one record field: 0/1 for flags, repr for floats."""
    if isinstance(v, (bool, np.bool_)):
        return '1' if v else '0'
    if isinstance(v, (int, np.integer)):
        return str(int(v))
    return repr(float(v))
