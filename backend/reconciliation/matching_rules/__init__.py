"""
Matching rules for bank statement reconciliation.
"""

from reconciliation.matching_rules.scoring import MatchingEngine, MatchCandidate, matching_engine

__all__ = ['MatchingEngine', 'MatchCandidate', 'matching_engine']
