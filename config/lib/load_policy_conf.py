"""Moderation policy loader module.

This module handles loading and parsing of the moderation policy table, the
externally tunable part of the chat risk scorer. Operators edit this file to
change sensitivity without a redeploy.

The policy file uses INI format with interpolation disabled so regular
expressions can be written literally:

    [policy]
    version = 2024.1
    threshold = 50

    [weights]
    flagged_content = 50
    urgency = 20
    history_per_flag = 10
    history_cap = 30
    short_message = 10
    short_message_length = 10

    [terms]
    contact = phone, number, call, email
    urgency = urgent, hurry, asap

    [patterns]
    phone = \\b\\d{3}[-.]?\\d{3}[-.]?\\d{4}\\b

Every [terms] entry except ``urgency`` belongs to the flagged-content test.

Raises:
    PolicyError: If the policy file is missing, invalid, or missing required settings
"""
from configparser import ConfigParser
from pathlib import Path
from typing import Dict, Any, List
import logging
import re

logger = logging.getLogger(__name__)

class PolicyValidationError:
    """Helper class to format policy validation errors"""
    def __init__(self):
        self.missing: List[str] = []
        self.invalid: List[str] = []
        self.invalid_patterns: List[str] = []
    
    def has_errors(self) -> bool:
        """Check if any errors exist"""
        return bool(self.missing or self.invalid or self.invalid_patterns)
    
    def format_message(self) -> str:
        """Format error message in a clean, readable way"""
        messages = []
        
        if self.missing:
            messages.append("Missing required settings:")
            messages.extend(f"  - {item}" for item in self.missing)
            
        if self.invalid:
            if messages:
                messages.append("")
            messages.append("Invalid values:")
            messages.extend(f"  - {item}" for item in self.invalid)
            
        if self.invalid_patterns:
            if messages:
                messages.append("")
            messages.append("Patterns that do not compile:")
            messages.extend(f"  - {item}" for item in self.invalid_patterns)
            
        return "\n".join(messages)

class PolicyError(Exception):
    """Raised when there's an error loading the moderation policy"""
    pass

REQUIRED_WEIGHTS = (
    'flagged_content',
    'urgency',
    'history_per_flag',
    'history_cap',
    'short_message',
    'short_message_length',
)

URGENCY_TERMS_KEY = 'urgency'

def split_terms(value: str) -> List[str]:
    """Split a comma separated vocabulary into lower-case terms."""
    return [term.strip().lower() for term in value.split(',') if term.strip()]

def load_policy_conf(policy_path: str) -> Dict[str, Any]:
    """
    Load and parse the moderation policy file with strict validation
    
    Args:
        policy_path: Path to the policy file
        
    Returns:
        Dictionary with ``version``, ``threshold``, ``weights``,
        ``flagged_terms``, ``urgency_terms`` and ``patterns``
        
    Raises:
        PolicyError: If file not found, parsing fails, or validation fails
    """
    config_path = Path(policy_path)
    
    if not config_path.exists():
        raise PolicyError(
            f"Moderation policy file not found at: {config_path}\n"
            "Set moderation_policy_path in settings.conf"
        )
        
    try:
        parser = ConfigParser(interpolation=None)
        parser.read(config_path)
        
        errors = PolicyValidationError()
        
        for section in ('policy', 'weights', 'terms', 'patterns'):
            if section not in parser:
                errors.missing.append(f"[{section}]")
        if errors.has_errors():
            raise PolicyError(
                "Moderation Policy Validation Failed\n\n" +
                errors.format_message()
            )
            
        policy = parser['policy']
        version = policy.get('version')
        if not version:
            errors.missing.append('policy.version')
            
        threshold = None
        try:
            threshold = policy.getint('threshold', fallback=50)
            if not 0 <= threshold <= 100:
                errors.invalid.append(f"policy.threshold: {threshold} (expected 0-100)")
        except ValueError:
            errors.invalid.append(f"policy.threshold: {policy.get('threshold')!r} (expected int)")
            
        weights = {}
        for key in REQUIRED_WEIGHTS:
            if key not in parser['weights']:
                errors.missing.append(f"weights.{key}")
                continue
            try:
                weights[key] = parser['weights'].getint(key)
            except ValueError:
                errors.invalid.append(f"weights.{key}: {parser['weights'][key]!r} (expected int)")
                continue
            if weights[key] < 0:
                errors.invalid.append(f"weights.{key}: must not be negative")
                
        flagged_terms: Dict[str, List[str]] = {}
        urgency_terms: List[str] = []
        for key, value in parser['terms'].items():
            if key == URGENCY_TERMS_KEY:
                urgency_terms = split_terms(value)
            else:
                flagged_terms[key] = split_terms(value)
        if not flagged_terms:
            errors.missing.append("terms: at least one flagged-content vocabulary")
            
        patterns: Dict[str, str] = {}
        for key, value in parser['patterns'].items():
            try:
                re.compile(value)
            except re.error as e:
                errors.invalid_patterns.append(f"{key}: {e}")
                continue
            patterns[key] = value
            
        if errors.has_errors():
            raise PolicyError(
                "Moderation Policy Validation Failed\n\n" +
                errors.format_message()
            )
            
        logger.debug(f"Loaded moderation policy {version} from {config_path}")
        return {
            'version': version,
            'threshold': threshold,
            'weights': weights,
            'flagged_terms': flagged_terms,
            'urgency_terms': urgency_terms,
            'patterns': patterns
        }
        
    except Exception as e:
        if isinstance(e, PolicyError):
            raise
        raise PolicyError(f"Error parsing {config_path}: {str(e)}")
