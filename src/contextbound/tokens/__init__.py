"""contextbound token accounting."""

from contextbound.tokens.accountant import TokenAccountant

__all__ = ["TokenAccountant"]
