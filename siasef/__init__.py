"""Si Asef: retrieval-augmented assistant for Indonesian K3 safety regulations."""

__version__ = "0.1.0"
