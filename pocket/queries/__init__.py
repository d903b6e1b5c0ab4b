"""Financial context package."""

from pocket.queries.context import FinancialContext, FinancialContextBuilder

__all__ = ["FinancialContext", "FinancialContextBuilder"]
