"""Moderation policy value and its process-wide cache."""
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional, Pattern, Tuple

from config import settings_conf, load_policy_conf

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PolicyWeights:
    flagged_content: int = 50
    urgency: int = 20
    history_per_flag: int = 10
    history_cap: int = 30
    short_message: int = 10
    short_message_length: int = 10


@dataclass(frozen=True)
class ModerationPolicy:
    """Immutable, versioned table of terms, patterns, weights and threshold.

    ``flagged_terms`` maps a vocabulary name (``contact``, ``payment`` ...) to
    its lower-case terms; ``patterns`` holds compiled regular expressions by
    name. Both feed the flagged-content test.
    """
    version: str
    threshold: int
    weights: PolicyWeights
    flagged_terms: Tuple[Tuple[str, Tuple[str, ...]], ...]
    urgency_terms: Tuple[str, ...]
    patterns: Tuple[Tuple[str, Pattern], ...]

    @classmethod
    def from_conf(cls, conf: Dict[str, Any]) -> 'ModerationPolicy':
        """Build a policy from the dictionary returned by load_policy_conf."""
        return cls(
            version=conf['version'],
            threshold=conf['threshold'],
            weights=PolicyWeights(**conf['weights']),
            flagged_terms=tuple(
                (name, tuple(terms)) for name, terms in conf['flagged_terms'].items()
            ),
            urgency_terms=tuple(conf['urgency_terms']),
            patterns=tuple(
                (name, re.compile(pattern, re.IGNORECASE))
                for name, pattern in conf['patterns'].items()
            ),
        )


_policy: Optional[ModerationPolicy] = None


def load_policy(policy_path: Optional[str] = None) -> ModerationPolicy:
    """Load a policy file without touching the cached policy.

    Raises:
        PolicyError: If the file is missing or invalid
    """
    path = policy_path or settings_conf['moderation_policy_path']
    return ModerationPolicy.from_conf(load_policy_conf(path))


def get_policy() -> ModerationPolicy:
    """Return the active policy, loading it on first use."""
    global _policy
    if _policy is None:
        _policy = load_policy()
        logger.info(f"Loaded moderation policy version {_policy.version}")
    return _policy


def reload_policy(policy_path: Optional[str] = None) -> ModerationPolicy:
    """Re-read the policy file and make it active.

    The previous policy stays active when the new file fails to load.
    """
    global _policy
    policy = load_policy(policy_path)
    previous = _policy.version if _policy else None
    _policy = policy
    logger.info(f"Moderation policy reloaded: {previous} -> {policy.version}")
    return policy
