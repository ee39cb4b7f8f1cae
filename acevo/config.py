"""Configuration system for acevo.

Hierarchical YAML configuration with deep-merge support:
  base.yaml → override layers → sweep overrides

Sections map 1:1 to YAML top-level keys:
  simulation   thread cap, number of generations, master seed
  population   subpopulation/group sizes, starting population, output file
  game         rounds per generation, reward coefficients, quality values
  learning     action SD, learning rates, eligibility trace parameter
  genetics     per-locus mutation, bounds and recombination rates

A field whose value cannot be converted to the field's type keeps its
default and a UserWarning is issued; only inconsistent configurations
(validate_config) are fatal.
"""

from __future__ import annotations

import copy
import dataclasses
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from acevo.genetics import MUTATION_SHAPES
from acevo.types import N_LOCI


# ═══════════════════════════════════════════════════════════════════════
# CONFIGURATION DATACLASSES
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class SimulationSection:
    """Run control."""
    max_num_thrds: int = 4      # Max number of worker threads
    numgen: int = 100           # Number of generations to simulate
    seed: Optional[int] = None  # Master seed; None = fresh OS entropy


@dataclass
class PopulationSection:
    """Metapopulation structure and starting population."""
    nsp: int = 4                # Number of subpopulations
    ngsp: int = 25              # Number of groups per subpopulation
    g: int = 4                  # Number of individuals in a group
    read_from_file: bool = False
    cont_gen: bool = False      # Continue the first generation (keep q from file)
    in_name: Optional[str] = None
    all0: List[float] = field(default_factory=lambda: [0.0, 0.25, 0.0])  # starting alleles
    out_name: Optional[str] = None


@dataclass
class GameSection:
    """Public-goods investment game.

    Benefit B = B0 + B1·ā + ½·B2·ā², cost (K1 + ½·K11·a + K12·q)·a.
    """
    T: int = 50                 # Rounds of interaction per generation
    B0: float = 0.0
    B1: float = 3.0
    B2: float = -1.0
    K1: float = 1.0
    K11: float = 0.0
    K12: float = -0.5
    qv: List[float] = field(default_factory=lambda: [0.5, 1.0, 1.5])  # quality values


@dataclass
class LearningSection:
    """Actor-critic learning parameters."""
    sigma: float = 0.1          # SD of the action distribution
    alphaw: float = 0.04        # Learning rate for w (critic)
    alphatheta: float = 0.004   # Learning rate for theta (actor)
    lambdatheta: float = 0.0    # Eligibility trace decay for theta


@dataclass
class GeneticsSection:
    """Mutation, bounds and recombination, one value per locus (w0, theta0, d).

    rho[0] is the probability that locus 0 is inherited from the maternal
    gamete; rho[i] is the recombination rate between loci i-1 and i.
    """
    mutation_shape: str = 'normal'  # 'uniform' | 'normal' | 'laplace'
    mut_rate: List[float] = field(default_factory=lambda: [0.01, 0.01, 0.01])
    SD: List[float] = field(default_factory=lambda: [0.02, 0.02, 0.02])
    max_val: List[float] = field(default_factory=lambda: [2.0, 2.0, 1.0])
    min_val: List[float] = field(default_factory=lambda: [-2.0, -2.0, -1.0])
    rho: List[float] = field(default_factory=lambda: [0.5, 0.5, 0.5])


@dataclass
class SimulationConfig:
    """Complete simulation configuration.

    Load from YAML via `load_config()`. Sections map 1:1 to YAML top-level keys.
    """
    simulation: SimulationSection = field(default_factory=SimulationSection)
    population: PopulationSection = field(default_factory=PopulationSection)
    game: GameSection = field(default_factory=GameSection)
    learning: LearningSection = field(default_factory=LearningSection)
    genetics: GeneticsSection = field(default_factory=GeneticsSection)


SECTION_MAP = {
    'simulation': SimulationSection,
    'population': PopulationSection,
    'game': GameSection,
    'learning': LearningSection,
    'genetics': GeneticsSection,
}


# ═══════════════════════════════════════════════════════════════════════
# YAML LOADING & MERGING
# ═══════════════════════════════════════════════════════════════════════

def deep_merge(base: Dict, override: Dict) -> Dict:
    """Recursively merge override into base. Modifies base in place.

    - Dict values are merged recursively
    - Non-dict values are replaced
    - Keys in override but not base are added

    Returns:
        The merged base dictionary.
    """
    for key, value in override.items():
        if (
            key in base
            and isinstance(base[key], dict)
            and isinstance(value, dict)
        ):
            deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def _coerce(value: Any, default: Any, where: str, type_name: str = '') -> Any:
    """Convert value to the type of default; warn and keep default on failure."""
    try:
        if default is None:
            # Optional[int] seed or Optional[str] file names
            if value is None:
                return None
            if 'int' in type_name and not isinstance(value, bool) and int(value) == value:
                return int(value)
            if 'str' in type_name and isinstance(value, str):
                return value
            raise TypeError(type(value).__name__)
        if isinstance(default, bool):
            if isinstance(value, bool):
                return value
            if isinstance(value, (int, float)) and value in (0, 1):
                return bool(value)
            raise TypeError(type(value).__name__)
        if isinstance(default, int):
            if isinstance(value, bool) or float(value) != int(value):
                raise TypeError(type(value).__name__)
            return int(value)
        if isinstance(default, float):
            if isinstance(value, bool):
                raise TypeError(type(value).__name__)
            return float(value)
        if isinstance(default, list):
            return [float(v) for v in value]
        if isinstance(default, str):
            if not isinstance(value, str):
                raise TypeError(type(value).__name__)
            return value
        return value
    except (TypeError, ValueError, OverflowError):
        warnings.warn(
            f"{where}: could not read value {value!r}, using default {default!r}",
            UserWarning,
            stacklevel=3,
        )
        return copy.deepcopy(default)


def _dict_to_section(section_cls, data: Dict, section_name: str) -> Any:
    """Convert a dict to a dataclass, ignoring unknown keys."""
    defaults = section_cls()
    kwargs = {}
    for f in dataclasses.fields(section_cls):
        if f.name in data:
            kwargs[f.name] = _coerce(
                data[f.name], getattr(defaults, f.name),
                f"{section_name}.{f.name}", str(f.type),
            )
    return section_cls(**kwargs)


def _yaml_to_config(data: Dict) -> SimulationConfig:
    """Convert a merged YAML dict to a SimulationConfig."""
    sections = {}
    for key, cls in SECTION_MAP.items():
        if key in data and isinstance(data[key], dict):
            sections[key] = _dict_to_section(cls, data[key], key)
        else:
            sections[key] = cls()
    return SimulationConfig(**sections)


def config_to_dict(config: SimulationConfig) -> Dict:
    """Plain-dict form of a config (round-trips through load_config)."""
    return dataclasses.asdict(config)


def validate_config(config: SimulationConfig) -> None:
    """Validate configuration constraints. Raises ValueError on failure.

    Checks:
      - Counts are positive
      - Per-locus arrays have N_LOCI entries, min_val <= max_val
      - Probabilities lie in [0, 1]
      - Learning parameters are usable (sigma > 0)
      - A starting population is specified
    """
    sim = config.simulation
    pop = config.population
    game = config.game
    lrn = config.learning
    gen = config.genetics

    for name, value in (
        ('simulation.max_num_thrds', sim.max_num_thrds),
        ('simulation.numgen', sim.numgen),
        ('population.nsp', pop.nsp),
        ('population.ngsp', pop.ngsp),
        ('population.g', pop.g),
    ):
        if value < 1:
            raise ValueError(f"{name} must be >= 1, got {value}")
    if game.T < 0:
        raise ValueError(f"game.T must be >= 0, got {game.T}")
    if sim.seed is not None and sim.seed < 0:
        raise ValueError("simulation.seed must be non-negative")

    if len(game.qv) == 0:
        raise ValueError("game.qv must contain at least one quality value")

    if lrn.sigma <= 0:
        raise ValueError(f"learning.sigma must be positive, got {lrn.sigma}")
    if lrn.alphaw < 0 or lrn.alphatheta < 0:
        raise ValueError("learning rates must be non-negative")

    if gen.mutation_shape not in MUTATION_SHAPES:
        raise ValueError(
            f"genetics.mutation_shape must be one of {sorted(MUTATION_SHAPES)}, "
            f"got '{gen.mutation_shape}'"
        )
    for name in ('mut_rate', 'SD', 'max_val', 'min_val', 'rho'):
        arr = getattr(gen, name)
        if len(arr) != N_LOCI:
            raise ValueError(
                f"genetics.{name} must have {N_LOCI} elements (one per locus), "
                f"got {len(arr)}"
            )
    for i in range(N_LOCI):
        if gen.min_val[i] > gen.max_val[i]:
            raise ValueError(
                f"genetics.min_val[{i}] ({gen.min_val[i]}) must be <= "
                f"max_val[{i}] ({gen.max_val[i]})"
            )
        if not 0.0 <= gen.mut_rate[i] <= 1.0:
            raise ValueError(f"genetics.mut_rate[{i}] must be in [0, 1]")
        if not 0.0 <= gen.rho[i] <= 1.0:
            raise ValueError(f"genetics.rho[{i}] must be in [0, 1]")
        if gen.SD[i] < 0:
            raise ValueError(f"genetics.SD[{i}] must be >= 0")

    if pop.read_from_file:
        if not pop.in_name:
            raise ValueError("population.in_name required when read_from_file=True")
    else:
        if len(pop.all0) != N_LOCI:
            raise ValueError(
                f"population.all0 must have {N_LOCI} elements, got {len(pop.all0)}"
            )
        if pop.cont_gen:
            warnings.warn(
                "population.cont_gen has no effect unless read_from_file=True",
                UserWarning,
                stacklevel=2,
            )


def load_config(
    base_path: Union[str, Path],
    *override_paths: Union[str, Path],
    sweep_overrides: Optional[Dict] = None,
) -> SimulationConfig:
    """Load and merge hierarchical YAML configuration.

    Merge order: base → override files (in order) → sweep overrides.
    Each layer overrides only the fields it specifies; missing override
    files are skipped.

    Raises:
        FileNotFoundError: If base_path doesn't exist.
        yaml.YAMLError: If a file is not valid YAML.
        ValueError: If validation fails.
    """
    base_path = Path(base_path)
    if not base_path.exists():
        raise FileNotFoundError(f"Config file not found: {base_path}")

    with open(base_path) as f:
        config_dict = yaml.safe_load(f) or {}

    for path in override_paths:
        path = Path(path)
        if path.exists():
            with open(path) as f:
                deep_merge(config_dict, yaml.safe_load(f) or {})

    if sweep_overrides is not None:
        deep_merge(config_dict, sweep_overrides)

    config = _yaml_to_config(config_dict)
    validate_config(config)
    return config


def default_config() -> SimulationConfig:
    """Return a SimulationConfig with all default values."""
    config = SimulationConfig()
    validate_config(config)
    return config
