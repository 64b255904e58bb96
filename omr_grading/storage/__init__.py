"""
Package Storage: loads each round's session, scoring rule and student registry.
"""

from .stores import RoundPaths, SessionStore, ScoringRuleStore, RegistryStore

__all__ = ['RoundPaths', 'SessionStore', 'ScoringRuleStore', 'RegistryStore']
