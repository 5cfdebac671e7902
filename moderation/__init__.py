"""Chat moderation: policy table and risk scorer.

Scoring is a deterministic keyword/pattern heuristic driven entirely by the
policy file named in settings (``moderation_policy_path``).
"""
from config import PolicyError
from .policy import (
    ModerationPolicy,
    PolicyWeights,
    get_policy,
    load_policy,
    reload_policy,
)
from .scorer import RiskScore, SenderHistory, flagged_content_rules, score

__all__ = [
    'ModerationPolicy',
    'PolicyWeights',
    'PolicyError',
    'RiskScore',
    'SenderHistory',
    'flagged_content_rules',
    'get_policy',
    'load_policy',
    'reload_policy',
    'score',
]
