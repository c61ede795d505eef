"""
DCA strategy: signal sources (ta indicators), entry spacing and the
factory that builds one fresh strategy per evaluation.
"""

from .dca_strategy import EnhancedDCAStrategy, TradeDecision
from .factory import build_strategy

__all__ = ['EnhancedDCAStrategy', 'TradeDecision', 'build_strategy']
