"""LifeGit: personal goals as branches of a life timeline."""

__version__ = "0.1.0"
