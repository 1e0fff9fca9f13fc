"""
Billing Kernel - document numbering and amount computation

Shared engine behind every estimate, purchase order, order confirmation,
delivery note and invoice:
- Per-type, per-month document number allocation
- Subtotal / split tax / total computation under a rounding policy
- Duplication and estimate-to-document derivation
"""

__version__ = "0.1.0"
