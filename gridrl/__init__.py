"""gridrl - tick-paced tabular Q-learning for grid worlds.

An agent learns to reach a goal while avoiding hazards. An episode scheduler,
invoked once per host tick, converts a target simulation speed into
environment steps and feeds every transition to a Q-learning policy with
adaptive exploration.
"""

__version__ = "1.0.0"
