"""Selectors for the approval kernel (read side)."""

from approval_kernel.selectors.chain_selector import ChainSelector, EnrollmentChainDTO

__all__ = [
    "ChainSelector",
    "EnrollmentChainDTO",
]
