"""SprintStress command-line interface."""
