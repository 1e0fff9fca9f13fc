"""
Kernel services.

Write-side services flush inside the caller's transaction; the
DocumentOrchestrator is the only component that commits or rolls back.
"""

from billing_kernel.services.derivation import DocumentDerivationEngine
from billing_kernel.services.document_orchestrator import (
    DocumentOperationStatus,
    DocumentOrchestrator,
    DocumentResult,
)
from billing_kernel.services.document_writer import DocumentWriter
from billing_kernel.services.sequence_allocator import SequenceAllocator

__all__ = [
    "DocumentDerivationEngine",
    "DocumentOperationStatus",
    "DocumentOrchestrator",
    "DocumentResult",
    "DocumentWriter",
    "SequenceAllocator",
]
