"""Genotype → phenotype mapping.

A phenotype carries the genotypic trait values (w0, theta0, d), the real
and perceived qualities (q, p), and the actor-critic learning state after
the rounds of interaction in a generation: estimated and observed rewards
(w, R), mean action theta, actual action a, payoff, TD error delta,
eligibility elig and eligibility trace ztheta. Group and individual
numbers tag the individual's slot; the sex flag is carried for container
compatibility and is not used by the game.

Invariant: p == q + d after any quality assignment (set_q, assign).
"""

from __future__ import annotations

from dataclasses import astuple, dataclass, fields
from typing import List, Sequence

from acevo.types import (
    BOOL_FIELDS,
    IDX_D,
    IDX_THETA0,
    IDX_W0,
    INT_FIELDS,
    PHENOTYPE_FIELDS,
)


@dataclass
class Phenotype:
    """Expressed traits and learning state of one individual."""
    w0: float = 0.0
    theta0: float = 0.0
    d: float = 0.0
    q: float = 1.0
    p: float = 1.0
    w: float = 0.0
    R: float = 0.0
    theta: float = 0.0
    a: float = 0.0
    payoff: float = 0.0
    delta: float = 0.0
    elig: float = 0.0
    ztheta: float = 0.0
    gnum: int = 0
    inum: int = 0
    female: bool = True

    def assign(self, genotype, female: bool = True) -> None:
        """Reset from a genotype's value (w0, theta0, d) at the start of life."""
        val = genotype.value()
        self.w0 = float(val[IDX_W0])
        self.theta0 = float(val[IDX_THETA0])
        self.d = float(val[IDX_D])
        self.q = 1.0
        self.p = self.q + self.d
        self.w = self.w0
        self.R = 0.0
        self.theta = self.theta0
        self.a = 0.0
        self.payoff = 0.0
        self.delta = 0.0
        self.elig = 0.0
        self.ztheta = 0.0
        self.gnum = 0
        self.inum = 0
        self.female = female

    @classmethod
    def from_genotype(cls, genotype, female: bool = True) -> 'Phenotype':
        ph = cls()
        ph.assign(genotype, female)
        return ph

    def set_q(self, q: float) -> None:
        self.q = q
        self.p = q + self.d

    def copy(self) -> 'Phenotype':
        return Phenotype(*astuple(self))

    def to_fields(self) -> List:
        return list(astuple(self))

    @classmethod
    def from_fields(cls, values: Sequence[str]) -> 'Phenotype':
        """Parse text fields in PHENOTYPE_FIELDS order.

        Raises:
            ValueError: If a field cannot be parsed.
        """
        if len(values) != len(PHENOTYPE_FIELDS):
            raise ValueError(
                f"expected {len(PHENOTYPE_FIELDS)} phenotype fields, got {len(values)}"
            )
        kwargs = {}
        for name, text in zip(PHENOTYPE_FIELDS, values):
            if name in INT_FIELDS:
                kwargs[name] = int(text)
            elif name in BOOL_FIELDS:
                kwargs[name] = parse_bool(text)
            else:
                kwargs[name] = float(text)
        return cls(**kwargs)

    @staticmethod
    def col_heads() -> str:
        return '\t'.join(f.name for f in fields(Phenotype))


def parse_bool(text: str) -> bool:
    """Parse a 0/1 (or true/false) flag.

    Raises:
        ValueError: For anything else.
    """
    t = text.strip().lower()
    if t in ('1', 'true'):
        return True
    if t in ('0', 'false'):
        return False
    raise ValueError(f"invalid boolean field: {text!r}")
