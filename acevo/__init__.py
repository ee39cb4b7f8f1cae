"""acevo: evolution of actor-critic learning in a public-goods game.

An individual-based, generational model coupling:
  - Actor-critic reinforcement learning within groups over T rounds
  - A public-goods investment game with real and perceived quality
  - Additive diploid genetics of the learning parameters (w0, theta0, d)
  - Payoff-proportional selection, mutation, segregation and recombination
  - A metapopulation of subpopulations mixed by migration each generation
"""

__version__ = "0.1.0"
