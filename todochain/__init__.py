"""Todo chain engine: dependency-ordered execution of agent task chains."""

__version__ = "0.1.0"
