"""Population containers: subpopulations and the metapopulation.

Each subpopulation holds individuals plus a state (its subpopulation
number). Several container variants are provided:

  SubPop0   append-only; individuals are added to start a generation and
            never removed individually (used by the simulation loop)
  SubPop1   fixed arena of slots with a stack of free indices; supports
            removal and reuse of slots
  SubPop2   as SubPop1, also counting females and males
  SubPopStruct1 / SubPopStruct2
            compact index lists of the alive members of a SubPop1/SubPop2,
            kept up to date as members die

In all variants ``add`` beyond capacity is a silent no-op. Individuals
are copied on ``add``.

MetaPopState is an ordered collection of subpopulations with a shared
capacity, and reads/writes the tab-separated population file.
"""

from __future__ import annotations

import csv
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Type, Union

from acevo.individual import Individual

logger = logging.getLogger(__name__)


@dataclass
class SubPopState:
    """Subpopulation state: only the subpopulation number."""
    spn: int = 0


# ═══════════════════════════════════════════════════════════════════════
# SubPop0: APPEND-ONLY
# ═══════════════════════════════════════════════════════════════════════


class SubPop0:
    """Append-only subpopulation.

    Every individual present is alive and there are no gaps, so
    ``range(len(sp))`` iterates over all members. Item assignment is for
    changing an individual's state, not for adding or removing members.
    """

    def __init__(self, max_inds: int = 0):
        self.ind: List[Individual] = []
        self.max_inds = max_inds
        self.state = SubPopState()

    def assign(self, max_inds: int = 0) -> None:
        self.ind = []
        self.max_inds = max_inds

    def clear(self) -> None:
        self.ind.clear()

    def __getitem__(self, i: int) -> Individual:
        return self.ind[i]

    def __setitem__(self, i: int, indi: Individual) -> None:
        self.ind[i] = indi

    def __len__(self) -> int:
        return len(self.ind)

    def __iter__(self) -> Iterator[Individual]:
        return iter(self.ind)

    def size(self) -> int:
        return len(self.ind)

    def i_end(self) -> int:
        return len(self.ind)

    def num_inds(self) -> int:
        return len(self.ind)

    def full(self) -> bool:
        return len(self.ind) == self.max_inds

    def add(self, indi: Individual) -> None:
        if len(self.ind) < self.max_inds:
            new = indi.copy()
            new.set_alive()
            self.ind.append(new)

    def swap(self, other: 'SubPop0') -> None:
        """Swap individuals and capacity (but not state) with another subpop."""
        self.ind, other.ind = other.ind, self.ind
        self.max_inds, other.max_inds = other.max_inds, self.max_inds


# ═══════════════════════════════════════════════════════════════════════
# SubPop1 / SubPop2: SLOT ARENA WITH FREE-INDEX STACK
# ═══════════════════════════════════════════════════════════════════════


class SubPop1:
    """Subpopulation with a fixed arena of slots and a stack of free indices.

    Slots of dead individuals are returned to the free stack by ``remove``
    and reused by later ``add`` calls. Iterate as
    ``for i in range(sp.i_end()): if sp[i].alive: ...``
    """

    def __init__(self, max_inds: int = 0):
        self.state = SubPopState()
        self.assign(max_inds)

    def assign(self, max_inds: int = 0) -> None:
        self.ind: List[Individual] = [Individual() for _ in range(max_inds)]
        self._reset_free()

    def _reset_free(self) -> None:
        n = len(self.ind)
        # top of the stack is slot 0
        self.free: List[int] = [n - 1 - k for k in range(n)]
        self.num_free = n
        self._i_end = 0

    def clear(self) -> None:
        for indi in self.ind:
            indi.set_dead()
        self._reset_free()

    def __getitem__(self, i: int) -> Individual:
        return self.ind[i]

    def __setitem__(self, i: int, indi: Individual) -> None:
        self.ind[i] = indi

    def __iter__(self) -> Iterator[Individual]:
        return (indi for indi in self.ind[:self._i_end] if indi.alive)

    @property
    def max_inds(self) -> int:
        return len(self.ind)

    def num_inds(self) -> int:
        return len(self.ind) - self.num_free

    def full(self) -> bool:
        return self.num_free == 0

    def i_end(self) -> int:
        return self._i_end

    def _take_slot(self, indi: Individual) -> int:
        self.num_free -= 1
        i = self.free[self.num_free]
        new = indi.copy()
        new.set_alive()
        self.ind[i] = new
        if i >= self._i_end:
            self._i_end = i + 1
        return i

    def _release_slot(self, i: int) -> None:
        self.free[self.num_free] = i
        self.num_free += 1
        self.ind[i].set_dead()
        if i == self._i_end - 1:
            self._i_end -= 1
            while self._i_end > 0 and not self.ind[self._i_end - 1].alive:
                self._i_end -= 1

    def add(self, indi: Individual) -> None:
        if self.num_free > 0:
            self._take_slot(indi)

    def remove(self, i: int) -> None:
        if self.ind[i].alive:
            self._release_slot(i)

    def swap(self, other: 'SubPop1') -> None:
        """Swap individuals and slot bookkeeping (but not state)."""
        self.ind, other.ind = other.ind, self.ind
        self.free, other.free = other.free, self.free
        self.num_free, other.num_free = other.num_free, self.num_free
        self._i_end, other._i_end = other._i_end, self._i_end


class SubPop2(SubPop1):
    """Two-sex subpopulation; also tracks female (nf) and male (nm) counts.

    The sex of an individual must not be changed while it is present.
    """

    def _reset_free(self) -> None:
        super()._reset_free()
        self.nf = 0
        self.nm = 0

    def add(self, indi: Individual) -> None:
        if self.num_free > 0:
            i = self._take_slot(indi)
            if self.ind[i].female:
                self.nf += 1
            else:
                self.nm += 1

    def remove(self, i: int) -> None:
        if self.ind[i].alive:
            if self.ind[i].female:
                self.nf -= 1
            else:
                self.nm -= 1
            self._release_slot(i)

    def swap(self, other: 'SubPop2') -> None:
        super().swap(other)
        self.nf, other.nf = other.nf, self.nf
        self.nm, other.nm = other.nm, self.nm


class SubPopStruct1:
    """Compact list of the indices of the alive members of a subpopulation."""

    def __init__(self, sub_pop):
        self.assign(sub_pop)

    def assign(self, sub_pop) -> None:
        self.alive_sub_pop = [i for i in range(sub_pop.i_end()) if sub_pop[i].alive]
        self.n = len(self.alive_sub_pop)

    def index(self, k: int) -> int:
        return self.alive_sub_pop[k]

    def update_death(self, k: int) -> None:
        """Account for the death of the member at position k of the list."""
        if k != self.n - 1:
            # replace dead individual with last one
            self.alive_sub_pop[k] = self.alive_sub_pop[self.n - 1]
        self.n -= 1


class SubPopStruct2:
    """Index lists of the alive females and males of a subpopulation."""

    def __init__(self, sub_pop):
        self.assign(sub_pop)

    def assign(self, sub_pop) -> None:
        self.female: List[int] = []
        self.male: List[int] = []
        for i in range(sub_pop.i_end()):
            if sub_pop[i].alive:
                if sub_pop[i].female:
                    self.female.append(i)
                else:
                    self.male.append(i)
        self.nf = len(self.female)
        self.nm = len(self.male)

    @property
    def n(self) -> int:
        return self.nf + self.nm

    def index_f(self, k: int) -> int:
        return self.female[k]

    def index_m(self, k: int) -> int:
        return self.male[k]

    def update_death_f(self, k: int) -> None:
        if k != self.nf - 1:
            self.female[k] = self.female[self.nf - 1]
        self.nf -= 1

    def update_death_m(self, k: int) -> None:
        if k != self.nm - 1:
            self.male[k] = self.male[self.nm - 1]
        self.nm -= 1


SubPop = Union[SubPop0, SubPop1, SubPop2]


# ═══════════════════════════════════════════════════════════════════════
# METAPOPULATION
# ═══════════════════════════════════════════════════════════════════════


class MetaPopState:
    """Ordered collection of subpopulations sharing one capacity.

    The container does nothing with subpopulation states except that, when
    reading from file, each individual's subpopulation number decides which
    subpopulation it is added to.
    """

    def __init__(self, num_p: int = 0, max_inds: int = 0,
                 subpop_cls: Type[SubPop] = SubPop0):
        self.subpop_cls = subpop_cls
        self.assign(num_p, max_inds)

    def assign(self, num_p: int, max_inds: int) -> None:
        self.sub_pop: List[SubPop] = []
        for k in range(num_p):
            sp = self.subpop_cls(max_inds)
            sp.state.spn = k
            self.sub_pop.append(sp)

    def __getitem__(self, k: int) -> SubPop:
        return self.sub_pop[k]

    def __len__(self) -> int:
        return len(self.sub_pop)

    def __iter__(self) -> Iterator[SubPop]:
        return iter(self.sub_pop)

    def num_pops(self) -> int:
        return len(self.sub_pop)

    def swap(self, other: 'MetaPopState') -> None:
        self.sub_pop, other.sub_pop = other.sub_pop, self.sub_pop

    def individuals(self) -> Iterator[Individual]:
        """Alive individuals in container order."""
        for sp in self.sub_pop:
            for i in range(sp.i_end()):
                if sp[i].alive:
                    yield sp[i]

    def total_inds(self) -> int:
        return sum(sp.num_inds() for sp in self.sub_pop)

    # ── File I/O ──────────────────────────────────────────────────────

    def read_from_file(self, path: Union[str, Path], n: int) -> bool:
        """Add the alive individuals listed in a population file.

        Checks that subpopulation numbers are valid and that no
        subpopulation overflows; dead rows are skipped.

        Args:
            path: Tab-separated population file with one header line.
            n: Expected number of individuals read.

        Returns:
            True if everything was valid and exactly n individuals were
            read. On False the population must be treated as unusable.
        """
        ok = True
        n_inds = 0
        try:
            with open(path, newline='') as f:
                header = f.readline()
                if not header:
                    logger.error("No data to read from %s", path)
                    return False
                for line_no, line in enumerate(f, start=2):
                    fields_ = line.split()
                    if not fields_:
                        continue
                    try:
                        indi = Individual.from_fields(fields_)
                    except ValueError as e:
                        logger.error("%s line %d: %s", path, line_no, e)
                        ok = False
                        continue
                    spn = indi.spn
                    if spn >= len(self.sub_pop):
                        logger.error(
                            "%s line %d: individual has invalid subpopulation "
                            "number: %d", path, line_no, spn,
                        )
                        ok = False
                    elif self.sub_pop[spn].full():
                        logger.error("Subpopulation number %d is full", spn)
                        ok = False
                    elif indi.alive:
                        self.sub_pop[spn].add(indi)
                        n_inds += 1
        except OSError as e:
            logger.error("Could not open file %s: %s", path, e)
            return False
        except UnicodeDecodeError as e:
            logger.error("Could not read file %s as text: %s", path, e)
            return False

        if n_inds != n:
            logger.error("Read %d individuals from %s, expected %d", n_inds, path, n)
            ok = False
        return ok

    def write_to_file(self, path: Union[str, Path]) -> bool:
        """Write all alive individuals, in container order, overwriting path.

        Returns:
            False if the file could not be written.
        """
        try:
            with open(path, 'w', newline='') as f:
                writer = csv.writer(f, delimiter='\t', lineterminator='\n')
                writer.writerow(Individual.col_heads().split('\t'))
                for indi in self.individuals():
                    writer.writerow(indi.to_fields())
        except OSError as e:
            logger.error("Cannot open %s, cannot save data: %s", path, e)
            return False
        return True
