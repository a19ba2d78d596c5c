"""Browse Azure virtual machines and run lifecycle commands against them."""

__version__ = "0.1.0"
