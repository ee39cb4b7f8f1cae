"""Generational simulation: learning, selection and migration.

Per generation, every worker thread handles its own contiguous range of
subpopulations:
  1. copy the subpopulation from the global container into a local one
  2. draw a quality q for each individual from the quality values qv and
     set p = q + d (skipped in generation 0 when continuing a generation
     read from file)
  3. split the subpopulation into contiguous groups of g; each group runs
     the T-round actor-critic episode (acevo.learning)
  4. if not the final generation, produce Ns offspring by payoff-
     proportional choice of two parents with replacement, each supplying
     one gamete, into the next-generation container; in the final
     generation, commit the updated individuals to the current container
  5. wait at the barrier
  6. barrier action (one thread, after all workers arrived and before any
     continues): shuffle all N individuals of the next generation into
     uniformly random slots of the current container, renumbering spn,
     gnum and inum for the destination slot

Workers read only their own subpopulations of the current container and
write only their own subpopulations of the next-generation container, so
no locks are needed. Each worker has a private random generator and
mutation record; the shuffle has a stream of its own. Equal seed and
thread count give identical runs.

Sizes: Ns = ngsp·g individuals per subpopulation, N = nsp·Ns in total.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple, Union

import numpy as np

from acevo.config import SimulationConfig, default_config
from acevo.genetics import Gamete, MutRec, TraitDiagnostics, compute_trait_diagnostics
from acevo.individual import Individual
from acevo.learning import ActCritGroup
from acevo.perf import PerfMonitor
from acevo.population import MetaPopState, SubPop0
from acevo.rng import create_rng_hierarchy, get_worker_rng, seed_entropy
from acevo.types import TRAIT_NAMES

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


# ═══════════════════════════════════════════════════════════════════════
# RESULT CONTAINER
# ═══════════════════════════════════════════════════════════════════════


@dataclass
class EvoResult:
    """Results of an evolutionary simulation."""
    numgen: int = 0
    num_threads: int = 0
    seed_entropy: int = 0
    completed: bool = False

    # Per-generation timeseries (length = numgen), after learning
    gen_mean_payoff: Optional[np.ndarray] = None
    gen_mean_w0: Optional[np.ndarray] = None
    gen_mean_theta0: Optional[np.ndarray] = None
    gen_mean_d: Optional[np.ndarray] = None
    gen_mean_theta: Optional[np.ndarray] = None

    # Summary
    final_n: int = 0
    out_name: Optional[str] = None
    output_written: bool = False


# ═══════════════════════════════════════════════════════════════════════
# BUILDING BLOCKS
# ═══════════════════════════════════════════════════════════════════════

def partition_subpops(nsp: int, num_thrds: int) -> List[Tuple[int, int]]:
    """Static split of subpopulation indices over workers.

    Worker t gets [t·k, (t+1)·k) with k = nsp // num_thrds; the last
    worker also takes the remainder.
    """
    num_per_thr = nsp // num_thrds
    ranges = []
    for t in range(num_thrds):
        np1 = t * num_per_thr
        np2 = nsp if t == num_thrds - 1 else np1 + num_per_thr
        ranges.append((np1, np2))
    return ranges


def assign_qualities(sp, qv: np.ndarray, rng: np.random.Generator) -> None:
    """Give each member a quality drawn uniformly from qv; p follows as q + d."""
    idx = rng.integers(0, len(qv), size=sp.size())
    for i in range(sp.size()):
        sp[i].phenotype.set_q(float(qv[idx[i]]))


def _parent_cdf(weights: np.ndarray) -> Optional[np.ndarray]:
    """Cumulative distribution for payoff-weighted parent choice.

    Non-positive payoffs get zero weight. Returns None when no weight is
    positive, meaning all parents are equally likely.
    """
    wei = np.clip(np.nan_to_num(weights, nan=0.0), 0.0, None)
    total = wei.sum()
    if not total > 0:
        return None
    cdf = np.cumsum(wei)
    cdf /= cdf[-1]
    return cdf


def _draw_parent(cdf: Optional[np.ndarray], n: int, rng: np.random.Generator) -> int:
    if cdf is None:
        return int(rng.integers(0, n))
    return min(int(np.searchsorted(cdf, rng.random(), side='right')), n - 1)


def select_reproduce(
    sp,
    mr: MutRec,
    rng: np.random.Generator,
    n_offspring: int,
    spn: int,
) -> List[Individual]:
    """Offspring of a subpopulation, parents chosen in proportion to payoff.

    For each offspring, in this order: draw the mother, draw the father
    (both with replacement, so selfing is possible), take a gamete from the
    mother, take a gamete from the father.

    Args:
        sp: Subpopulation (all members alive, no gaps).
        mr: Mutation/recombination parameters.
        rng: Random generator.
        n_offspring: Number of offspring to produce.
        spn: Subpopulation number given to the offspring.

    Returns:
        List of n_offspring newborn individuals (empty if sp is empty).
    """
    offspr: List[Individual] = []
    n_par = sp.num_inds()
    if n_par == 0:
        return offspr

    weights = np.array([sp[i].phenotype.payoff for i in range(n_par)], dtype=np.float64)
    cdf = _parent_cdf(weights)
    for _ in range(n_offspring):
        matind = sp[_draw_parent(cdf, n_par, rng)]
        patind = sp[_draw_parent(cdf, n_par, rng)]
        mat_gam = matind.get_gamete(mr, rng)
        pat_gam = patind.get_gamete(mr, rng)
        offspr.append(Individual.from_gametes(mat_gam, pat_gam, spn))
    return offspr


def migrate(
    pop: MetaPopState,
    next_pop: MetaPopState,
    rng: np.random.Generator,
    ngsp: int,
    g: int,
) -> None:
    """Place every next-generation individual in a uniformly random slot of pop.

    Destination slots are visited in (subpopulation, group, member) order;
    the source of the n-th slot is position perm[n] of next_pop, counted
    across subpopulations. Each copied individual takes the spn, gnum and
    inum of its destination.
    """
    ns = ngsp * g
    n_total = len(pop) * ns
    indx = rng.permutation(n_total)
    n = 0
    for spn in range(len(pop)):
        sp = pop[spn]
        for k in range(ngsp):
            for j in range(g):
                src_spn, src_i = divmod(int(indx[n]), ns)
                n += 1
                # each source position occurs once, so nothing is shared
                indi = next_pop[src_spn][src_i]
                indi.spn = spn
                indi.phenotype.gnum = k + 1
                indi.phenotype.inum = j + 1
                sp[k * g + j] = indi


# ═══════════════════════════════════════════════════════════════════════
# SIMULATION
# ═══════════════════════════════════════════════════════════════════════

class Evo:
    """Evolution of actor-critic learning parameters over generations.

    Construction sets up the current and next-generation containers and
    the starting population; ``pop_ok`` is False when a population file
    could not be used, in which case ``run`` refuses to run.
    """

    def __init__(
        self,
        config: Optional[SimulationConfig] = None,
        seed: Optional[int] = None,
        num_threads: Optional[int] = None,
        out_name: Optional[Union[str, Path]] = None,
    ):
        if config is None:
            config = default_config()
        self.config = config
        pop_cfg = config.population

        self.nsp = pop_cfg.nsp
        self.ngsp = pop_cfg.ngsp
        self.g = pop_cfg.g
        self.max_inds = self.g * self.ngsp
        self.ng = self.nsp * self.ngsp
        self.Ns = self.ngsp * self.g
        self.N = self.ng * self.g
        self.T = config.game.T
        self.numgen = config.simulation.numgen
        self.qv = np.asarray(config.game.qv, dtype=np.float64)
        self.cont_gen = pop_cfg.read_from_file and pop_cfg.cont_gen
        out = out_name if out_name is not None else pop_cfg.out_name
        self.out_name = str(out) if out is not None else None

        max_thrds = num_threads if num_threads is not None else config.simulation.max_num_thrds
        # at least one subpopulation per thread
        self.num_thrds = max(1, min(max_thrds, self.nsp))

        master_seed = seed if seed is not None else config.simulation.seed
        self.seed_entropy = seed_entropy(master_seed)
        if master_seed is None:
            logger.info("No seed given; using entropy %d", self.seed_entropy)
        self.rngs = create_rng_hierarchy(self.seed_entropy, self.num_thrds)

        self.pop = MetaPopState(self.nsp, self.max_inds, SubPop0)
        self.next_pop = MetaPopState(self.nsp, self.max_inds, SubPop0)
        self._check_sizes()

        self.pop_ok = True
        if pop_cfg.read_from_file:
            self.pop_ok = self.pop.read_from_file(pop_cfg.in_name, self.N)
        else:
            self._seed_population(pop_cfg.all0)

        self._gen = 0
        self._gen_diag: List[Optional[TraitDiagnostics]] = [None] * self.nsp
        self._result: Optional[EvoResult] = None
        self._progress_callback: Optional[ProgressCallback] = None
        self._perf = PerfMonitor(enabled=False)

    def _check_sizes(self) -> None:
        if self.N != self.nsp * self.ngsp * self.g:
            raise ValueError(
                f"total individuals {self.N} != nsp·ngsp·g = "
                f"{self.nsp}·{self.ngsp}·{self.g}"
            )
        for mp in (self.pop, self.next_pop):
            if len(mp) != self.nsp:
                raise ValueError(f"expected {self.nsp} subpopulations, got {len(mp)}")
            for sp in mp:
                if sp.max_inds != self.ngsp * self.g:
                    raise ValueError(
                        f"subpopulation capacity {sp.max_inds} != ngsp·g = "
                        f"{self.ngsp * self.g}"
                    )

    def _seed_population(self, all0: Sequence[float]) -> None:
        """Fill every slot with the same homozygote for the starting gamete."""
        ind = Individual.from_gametes(Gamete(all0), spn=0)
        for n in range(self.nsp):
            ind.spn = n
            sp = self.pop[n]
            for k in range(self.ngsp):
                ind.phenotype.gnum = k + 1
                for i in range(self.g):
                    ind.phenotype.inum = i + 1
                    sp.add(ind)

    # ── Running ────────────────────────────────────────────────────────

    def run(
        self,
        perf: Optional[PerfMonitor] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> EvoResult:
        """Simulate all generations and write the final population.

        Args:
            perf: Optional PerfMonitor; times 'interaction', 'reproduction'
                and 'migration'.
            progress_callback: Optional callable(generations_done, numgen),
                called once per generation from the barrier action.

        Returns:
            EvoResult; ``completed`` is False if the starting population was
            not valid.
        """
        result = EvoResult(
            numgen=self.numgen,
            num_threads=self.num_thrds,
            seed_entropy=self.seed_entropy,
            out_name=self.out_name,
        )
        if not self.pop_ok:
            logger.error("Starting population not valid")
            return result

        for name in ('payoff', 'w0', 'theta0', 'd', 'theta'):
            setattr(result, f'gen_mean_{name}', np.zeros(self.numgen, dtype=np.float64))
        self._result = result
        self._progress_callback = progress_callback
        self._perf = perf if perf is not None else PerfMonitor(enabled=False)
        self._gen = 0

        logger.info("Number of threads: %d", self.num_thrds)
        self._perf.start()
        ranges = partition_subpops(self.nsp, self.num_thrds)
        barrier = threading.Barrier(self.num_thrds, action=self._end_of_generation)
        with ThreadPoolExecutor(max_workers=self.num_thrds) as executor:
            futures = [
                executor.submit(self._worker, t, np1, np2, barrier)
                for t, (np1, np2) in enumerate(ranges)
            ]
            errors = [fut.exception() for fut in futures]
        self._perf.stop()

        errors = [e for e in errors if e is not None]
        if errors:
            # workers released by barrier.abort() report BrokenBarrierError
            causes = [e for e in errors if not isinstance(e, threading.BrokenBarrierError)]
            raise (causes or errors)[0]

        result.completed = True
        result.final_n = self.pop.total_inds()
        if self.out_name is not None:
            result.output_written = self.pop.write_to_file(self.out_name)
        return result

    def _worker(self, threadn: int, np1: int, np2: int,
                barrier: threading.Barrier) -> None:
        rng = get_worker_rng(self.rngs, threadn)
        mr = MutRec.from_config(self.config.genetics)
        try:
            for gen in range(self.numgen):
                popl = MetaPopState(np2 - np1, self.max_inds, SubPop0)
                for n in range(np1, np2):
                    spl = popl[n - np1]
                    spl.state.spn = n
                    self._generation_step(n, spl, gen, rng, mr)
                barrier.wait()
        except Exception:
            # release the other workers instead of leaving them at the barrier
            barrier.abort()
            raise

    def _generation_step(self, n: int, spl: SubPop0, gen: int,
                         rng: np.random.Generator, mr: MutRec) -> None:
        """Steps 1–4 for subpopulation n, using the worker-local container spl."""
        spg = self.pop[n]
        for i in range(spg.size()):
            spl.add(spg[i])

        if gen > 0 or not self.cont_gen:
            assign_qualities(spl, self.qv, rng)

        g = self.g
        with self._perf.track('interaction'):
            for k in range(self.ngsp):
                phen = [spl[k * g + j].phenotype for j in range(g)]
                acg = ActCritGroup.from_config(self.config, phen)
                acg.interact(rng)
                for j, ph in enumerate(acg.memb):
                    spl[k * g + j].phenotype = ph

        self._gen_diag[n] = compute_trait_diagnostics(spl)

        if gen < self.numgen - 1:
            with self._perf.track('reproduction'):
                next_spg = self.next_pop[n]
                next_spg.clear()
                for indi in select_reproduce(spl, mr, rng, self.Ns, n):
                    next_spg.add(indi)
        else:
            for i in range(spg.size()):
                spg[i] = spl[i]
            spg.state.spn = n

    def _end_of_generation(self) -> None:
        """Barrier action: statistics, migration and progress, in one thread."""
        gen = self._gen
        self._record_generation(gen)
        if gen < self.numgen - 1:
            with self._perf.track('migration'):
                migrate(self.pop, self.next_pop, self.rngs['migration'],
                        self.ngsp, self.g)
        self._gen += 1
        if self._progress_callback is not None:
            self._progress_callback(self._gen, self.numgen)

    def _record_generation(self, gen: int) -> None:
        diags = [d for d in self._gen_diag if d is not None and d.n > 0]
        count = sum(d.n for d in diags)
        if count == 0:
            return
        r = self._result
        mean_value = sum(d.n * d.mean_value for d in diags) / count
        for col, name in enumerate(TRAIT_NAMES):
            getattr(r, f'gen_mean_{name}')[gen] = mean_value[col]
        r.gen_mean_payoff[gen] = sum(d.n * d.mean_payoff for d in diags) / count
        r.gen_mean_theta[gen] = sum(d.n * d.mean_theta for d in diags) / count


def run_evolution(
    config: Optional[SimulationConfig] = None,
    seed: Optional[int] = None,
    num_threads: Optional[int] = None,
    out_name: Optional[Union[str, Path]] = None,
    perf: Optional[PerfMonitor] = None,
    progress_callback: Optional[ProgressCallback] = None,
) -> EvoResult:
    """Build an Evo from a config and run it.

    Args:
        config: SimulationConfig; uses default if None.
        seed: Overrides config.simulation.seed.
        num_threads: Overrides config.simulation.max_num_thrds.
        out_name: Overrides config.population.out_name.
        perf: Optional PerfMonitor.
        progress_callback: Optional callable(generations_done, numgen).

    Returns:
        EvoResult.
    """
    evo = Evo(config, seed=seed, num_threads=num_threads, out_name=out_name)
    return evo.run(perf=perf, progress_callback=progress_callback)
