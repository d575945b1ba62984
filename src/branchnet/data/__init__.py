from .synthetic import create_synthetic_dataset

__all__ = ["create_synthetic_dataset"]
