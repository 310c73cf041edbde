"""FitQuest progress and achievement engine."""

__version__ = "0.1.0"
