"""Command line interface for checking configuration loading"""
from . import settings_conf, load_policy_conf, PolicyError
import sys

def main():
    """Display loaded configuration and validate the moderation policy"""
    print("\nSettings Configuration:")
    print("-" * 50)
    for key, value in settings_conf.items():
        if key == 'jwt_secret':
            value = '********'
        print(f"{key}: {value}")
        
    print("\nModeration Policy:")
    print("-" * 50)
    try:
        policy = load_policy_conf(settings_conf['moderation_policy_path'])
    except PolicyError as e:
        print(str(e))
        sys.exit(1)
        
    print(f"version: {policy['version']}")
    print(f"threshold: {policy['threshold']}")
    for key, value in policy['weights'].items():
        print(f"weight.{key}: {value}")
    for key, terms in policy['flagged_terms'].items():
        print(f"terms.{key}: {len(terms)} terms")
    print(f"terms.urgency: {len(policy['urgency_terms'])} terms")
    for key in policy['patterns']:
        print(f"pattern: {key}")

if __name__ == "__main__":
    main()
