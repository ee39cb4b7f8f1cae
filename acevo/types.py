"""Core constants for acevo.

This module is the SINGLE SOURCE OF TRUTH for:
  - N_LOCI and the locus → trait mapping (w0, theta0, d)
  - PHENOTYPE_FIELDS: fixed column order of phenotype records
  - Column-header helpers for the population file format

All modules import these names from here. No other module defines the
phenotype field order.
"""

from typing import List, Tuple

# ═══════════════════════════════════════════════════════════════════════
# GENOTYPE CONSTANTS
# ═══════════════════════════════════════════════════════════════════════

N_LOCI = 3  # One locus per genetically determined trait. Fixed constant.

IDX_W0 = 0       # initial estimate of expected reward (critic)
IDX_THETA0 = 1   # initial mean action (actor)
IDX_D = 2        # perception bias, p - q

TRAIT_NAMES: Tuple[str, ...] = ('w0', 'theta0', 'd')


# ═══════════════════════════════════════════════════════════════════════
# RECORD LAYOUT
# ═══════════════════════════════════════════════════════════════════════

# Order matters: this is the column order of the population file.
PHENOTYPE_FIELDS: Tuple[str, ...] = (
    'w0',       # value of w at start of generation
    'theta0',   # value of theta at start of generation
    'd',        # perceived minus real quality
    'q',        # real quality
    'p',        # perceived quality
    'w',        # estimated reward (critic)
    'R',        # reward in latest round
    'theta',    # mean action (actor)
    'a',        # action in latest round
    'payoff',   # accumulated payoff (per round after interaction)
    'delta',    # TD error
    'elig',     # eligibility
    'ztheta',   # eligibility trace for theta
    'gnum',     # group number (1-based)
    'inum',     # individual number within group (1-based)
    'female',
)

INT_FIELDS = frozenset({'gnum', 'inum'})
BOOL_FIELDS = frozenset({'female'})

N_PHENOTYPE_FIELDS = len(PHENOTYPE_FIELDS)
# mat + pat alleles, phenotype, SubPop, Alive
N_RECORD_FIELDS = 2 * N_LOCI + N_PHENOTYPE_FIELDS + 2


def genotype_col_heads(prefixes: Tuple[str, ...] = ('Mat', 'Pat')) -> List[str]:
    """Column headers for the gametes of a genotype, e.g. Mat1..Mat3, Pat1..Pat3."""
    return [f"{pre}{loc + 1}" for pre in prefixes for loc in range(N_LOCI)]


def individual_col_heads() -> List[str]:
    """Full header row of the population file."""
    return genotype_col_heads() + list(PHENOTYPE_FIELDS) + ['SubPop', 'Alive']
