"""
Portfolio risk governor.
"""

from .governor import GovernorDecision, PortfolioRiskGovernor

__all__ = ["GovernorDecision", "PortfolioRiskGovernor"]
