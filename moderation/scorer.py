"""Deterministic, explainable risk scoring of chat messages."""
from typing import List, Optional

from pydantic import BaseModel, Field

from .policy import ModerationPolicy, get_policy


class SenderHistory(BaseModel):
    flagged_count: int = 0


class RiskScore(BaseModel):
    risk_score: int = Field(ge=0, le=100)
    is_flagged: bool
    matched_rules: List[str] = Field(default_factory=list)
    policy_version: str

    @property
    def reason(self) -> Optional[str]:
        """Flag reason stored on the message, None when not flagged."""
        if not self.is_flagged:
            return None
        rules = ', '.join(self.matched_rules) or 'threshold reached'
        return f"Automatic content filtering: {rules}"


def flagged_content_rules(content: str, policy: ModerationPolicy) -> List[str]:
    """Names of the term lists and patterns the content matches."""
    lowered = content.lower()
    matched = [
        f"terms:{name}"
        for name, terms in policy.flagged_terms
        if any(term in lowered for term in terms)
    ]
    matched.extend(
        f"pattern:{name}"
        for name, pattern in policy.patterns
        if pattern.search(content)
    )
    return matched


def score(
    content: Optional[str],
    sender_history: SenderHistory,
    policy: Optional[ModerationPolicy] = None
) -> RiskScore:
    """Score a message against the moderation policy.

    Pure apart from reading the cached policy when none is passed.

    Args:
        content: Message text; None is scored as an empty message
        sender_history: Sender's moderation history
        policy: Policy to apply, defaults to the active policy

    Returns:
        RiskScore with the clamped score, flag decision and the rules that fired
    """
    policy = policy or get_policy()
    weights = policy.weights
    content = content or ''
    total = 0
    matched: List[str] = []

    content_rules = flagged_content_rules(content, policy)
    if content_rules:
        total += weights.flagged_content
        matched.extend(content_rules)

    lowered = content.lower()
    if any(term in lowered for term in policy.urgency_terms):
        total += weights.urgency
        matched.append('urgency')

    flagged_count = max(sender_history.flagged_count, 0)
    history = min(flagged_count * weights.history_per_flag, weights.history_cap)
    if history:
        total += history
        matched.append(f"history:{flagged_count}")

    if len(content.strip()) < weights.short_message_length:
        total += weights.short_message
        matched.append('short_message')

    total = max(0, min(total, 100))
    return RiskScore(
        risk_score=total,
        is_flagged=total >= policy.threshold,
        matched_rules=matched,
        policy_version=policy.version,
    )
