"""
Pocket - Source Package

A personal finance assistant: receipt capture, expense categorization,
Open Finance bank aggregation, budgets, bill splitting and a finance chat.

DESIGN PRINCIPLES:
1. AI suggests → Human confirms → System verifies
2. Never show more money than the user actually has
3. Every LLM call has a deterministic fallback
4. Every step must be auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Pocket Team"
