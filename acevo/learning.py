"""Actor-critic learning in a public-goods investment game.

One ActCritGroup simulates the interactions of the g members of a group
over the T rounds of a generation. Each round:

  1. Actions:  a_i = theta_i + sigma·Z_i,   Z_i ~ N(0, 1)
  2. Benefit:  B = B0 + B1·ā + ½·B2·ā²       (ā = mean action of the group)
     Reward:   R_i = B − (K1 + ½·K11·a_i + K12·p_i)·a_i    (perceived quality)
     Payoff:   payoff_i += B − (K1 + ½·K11·a_i + K12·q_i)·a_i  (real quality)
  3. TD error: delta_i = R_i − w_i, clamped to ±DELTA_LIM
  4. Critic:   w_i += alphaw·delta_i
  5. Trace:    elig_i = (a_i − theta_i)/sigma²
               ztheta_i = lambdatheta·ztheta_i + elig_i, clamped to ±ZTHETA_LIM/sigma
  6. Actor:    theta_i += alphatheta·ztheta_i·delta_i

After the last round payoff is divided by T. Only the actor uses an
eligibility trace: with a single state a trace on the value estimate
would add nothing (cf. Sutton & Barto, section 13.6).

Computation is vectorised over group members; per round, one vector of g
standard-normal draws is taken, in member order.
"""

from __future__ import annotations

from typing import List, Sequence

import numpy as np

from acevo.phenotype import Phenotype


DELTA_LIM: float = 0.5    # bound on |TD error|
ZTHETA_LIM: float = 5.0   # bound on |eligibility trace|, in units of 1/sigma

# Phenotype attributes touched by the learning dynamics
_STATE_FIELDS = ('q', 'p', 'w', 'R', 'theta', 'a', 'payoff', 'delta', 'elig', 'ztheta')


def clamp_td_error(delta):
    """Clamp TD error(s) to [-DELTA_LIM, DELTA_LIM]."""
    return np.clip(delta, -DELTA_LIM, DELTA_LIM)


def clamp_trace(ztheta, sigma: float):
    """Clamp eligibility trace(s) to [-ZTHETA_LIM/sigma, ZTHETA_LIM/sigma]."""
    lim = ZTHETA_LIM / sigma
    return np.clip(ztheta, -lim, lim)


class ActCritGroup:
    """Actor-critic learning for the members of one interaction group.

    The member phenotypes are copied on construction; after ``interact``
    the updated phenotypes are available from ``memb``.
    """

    def __init__(
        self,
        g: int,
        T: int,
        B0: float,
        B1: float,
        B2: float,
        K1: float,
        K11: float,
        K12: float,
        sigma: float,
        alphaw: float,
        alphatheta: float,
        lambdatheta: float,
        memb: Sequence[Phenotype],
    ):
        self.g = g
        self.T = T
        self.B0 = B0
        self.B1 = B1
        self.B2 = B2
        self.K1 = K1
        self.K11 = K11
        self.K12 = K12
        self.sigma = sigma
        self.alphaw = alphaw
        self.alphatheta = alphatheta
        self.lambdatheta = lambdatheta
        self._memb: List[Phenotype] = [ph.copy() for ph in memb]

    @classmethod
    def from_config(cls, config, memb: Sequence[Phenotype]) -> 'ActCritGroup':
        """Build a group using the game and learning sections of a SimulationConfig."""
        game = config.game
        lrn = config.learning
        return cls(
            config.population.g, game.T,
            game.B0, game.B1, game.B2, game.K1, game.K11, game.K12,
            lrn.sigma, lrn.alphaw, lrn.alphatheta, lrn.lambdatheta,
            memb,
        )

    @property
    def memb(self) -> List[Phenotype]:
        return self._memb

    def get_memb(self) -> List[Phenotype]:
        return self._memb

    def interact(self, rng: np.random.Generator) -> None:
        """Run the T rounds of the generation."""
        n = len(self._memb)
        st = {
            name: np.array([getattr(m, name) for m in self._memb], dtype=np.float64)
            for name in _STATE_FIELDS
        }
        q, p = st['q'], st['p']
        w, theta, ztheta = st['w'], st['theta'], st['ztheta']
        R, a, delta, elig = st['R'], st['a'], st['delta'], st['elig']

        payoff = np.zeros(n, dtype=np.float64)
        sigma = self.sigma
        for _ in range(self.T):
            a = theta + sigma * rng.standard_normal(n)
            R, payoff_incr = self.reward_payoff(a, p, q)
            payoff += payoff_incr
            delta = clamp_td_error(R - w)
            w = w + self.alphaw * delta
            elig = (a - theta) / (sigma * sigma)
            ztheta = clamp_trace(self.lambdatheta * ztheta + elig, sigma)
            theta = theta + self.alphatheta * ztheta * delta

        if self.T > 0:
            payoff /= self.T

        for i, m in enumerate(self._memb):
            m.w = float(w[i])
            m.R = float(R[i])
            m.theta = float(theta[i])
            m.a = float(a[i])
            m.payoff = float(payoff[i])
            m.delta = float(delta[i])
            m.elig = float(elig[i])
            m.ztheta = float(ztheta[i])

    def reward_payoff(self, a: np.ndarray, p: np.ndarray, q: np.ndarray):
        """Rewards (perceived quality) and payoff increments (real quality).

        Returns:
            Tuple (R, payoff_increment), each of shape a.shape.
        """
        av_a = a.sum() / self.g
        B = self.B0 + self.B1 * av_a + 0.5 * self.B2 * av_a * av_a
        R = B - (self.K1 + 0.5 * self.K11 * a + self.K12 * p) * a
        incr = B - (self.K1 + 0.5 * self.K11 * a + self.K12 * q) * a
        return R, incr
