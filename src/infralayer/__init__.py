"""InfraLayer: declarative infrastructure apply engine."""

__version__ = "0.1.0"
