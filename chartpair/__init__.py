"""chartpair: paired-chart rating survey core."""

__version__ = "0.3.0"
