"""bpanalyzer: best-practice rule analysis for tabular models."""

__version__ = "0.1.0"
