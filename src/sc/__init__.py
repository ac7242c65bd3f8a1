"""Speaker Contracts: contract lifecycle and e-signature workflow for a speaker bureau."""

__version__ = "0.1.0"
