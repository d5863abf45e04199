"""SpecGraph: predict which E2E tests a diff breaks and record every analysis as a graph."""

__version__ = "0.1.0"
