"""SprintStress — concurrent persona load testing for the Stock Sprint trading game."""

__version__ = "0.1.0"
