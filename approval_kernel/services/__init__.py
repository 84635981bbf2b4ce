"""Services for the approval kernel (write side)."""

from approval_kernel.services.approval_chain_service import ApprovalChainService
from approval_kernel.services.chain_definition_service import ChainDefinitionService
from approval_kernel.services.chain_store import SqlChainStore

__all__ = [
    "ApprovalChainService",
    "ChainDefinitionService",
    "SqlChainStore",
]
