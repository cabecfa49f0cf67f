"""HTTP ingress for the search relay."""

__version__ = "0.1.0"
