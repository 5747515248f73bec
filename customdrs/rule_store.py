import logging
import os

import yaml

from .errors import RuleValidationError
from .models import AffinityRule, RuleKind

logger = logging.getLogger('customdrs')

# Record type names accepted from the store, including the Affinity/AntiAffinity labels
RULE_TYPES = {
    'affinity': RuleKind.TOGETHER_REQUIRED,
    'togetherrequired': RuleKind.TOGETHER_REQUIRED,
    'antiaffinity': RuleKind.APART_REQUIRED,
    'apartrequired': RuleKind.APART_REQUIRED,
}


def parse_rule(record):
    """
    Convert one raw rule record into an AffinityRule.
    Raises RuleValidationError on a malformed record.
    """
    if not isinstance(record, dict):
        raise RuleValidationError(f"Rule record must be a mapping, got {type(record).__name__}")

    name = str(record.get('name') or '').strip()
    if not name:
        raise RuleValidationError("Rule record has no name")
    if len(name) > 100:
        raise RuleValidationError(f"Rule name '{name[:20]}...' is longer than 100 characters")

    raw_type = str(record.get('type') or '').replace('-', '').replace('_', '').lower()
    kind = RULE_TYPES.get(raw_type)
    if kind is None:
        raise RuleValidationError(f"Rule '{name}' has unknown type '{record.get('type')}'")

    vms = record.get('vms') or []
    if isinstance(vms, str):
        vms = vms.split(',')
    members = []
    for vm in vms:
        vm = str(vm).strip()
        if vm and vm not in members:
            members.append(vm)
    if len(members) < 2:
        raise RuleValidationError(f"Rule '{name}' needs at least two VMs, got {len(members)}")

    enabled = record.get('enabled', True)
    if not isinstance(enabled, bool):
        raise RuleValidationError(f"Rule '{name}' has non-boolean enabled flag: {enabled!r}")

    return AffinityRule(
        name=name,
        kind=kind,
        members=tuple(members),
        enabled=enabled,
        scope=record.get('cluster') or None,
        description=record.get('description'),
    )


class RuleStore:
    """
    Affinity rules kept in a YAML file. The file is read again on every
    call so each planning pass sees the current rule set.
    """

    def __init__(self, rules_file):
        self.rules_file = rules_file

    def _load_records(self):
        if not self.rules_file or not os.path.exists(self.rules_file):
            logger.warning(f"[RuleStore] Rules file not found at '{self.rules_file}'. No rules loaded.")
            return []
        try:
            with open(self.rules_file, 'r') as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            logger.error(f"[RuleStore] Error parsing rules file '{self.rules_file}': {e}. No rules loaded.")
            return []

        records = data.get('rules', []) if isinstance(data, dict) else data
        if not isinstance(records, list):
            logger.error(f"[RuleStore] 'rules' in '{self.rules_file}' is not a list. No rules loaded.")
            return []
        return records

    def list_rules(self):
        rules = []
        seen_names = set()
        for index, record in enumerate(self._load_records()):
            try:
                rule = parse_rule(record)
            except RuleValidationError as e:
                logger.warning(f"[RuleStore] Skipping rule record #{index}: {e}")
                continue
            if rule.name in seen_names:
                logger.warning(f"[RuleStore] Skipping duplicate rule name '{rule.name}' (record #{index}).")
                continue
            seen_names.add(rule.name)
            rules.append(rule)
        return rules

    def list_enabled_rules(self, scope=None):
        """Enabled rules that are global or scoped to 'scope'."""
        rules = [rule for rule in self.list_rules()
                 if rule.enabled and (scope is None or rule.scope is None or rule.scope == scope)]
        logger.info(f"[RuleStore] Loaded {len(rules)} enabled rule(s) for scope '{scope or 'ALL'}'.")
        return rules
