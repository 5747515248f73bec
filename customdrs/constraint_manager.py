import logging

from .models import ConstraintCheck, RuleKind, RuleViolation

logger = logging.getLogger('customdrs')

class ConstraintManager:
    def __init__(self, rules):
        self.rules = [rule for rule in rules if rule.enabled]
        self._rules_by_workload = {}
        for rule in self.rules:
            for member in rule.members:
                self._rules_by_workload.setdefault(member, []).append(rule)
        logger.debug(f"[ConstraintManager] Loaded {len(self.rules)} enabled rule(s) covering {len(self._rules_by_workload)} workload(s).")

    def rules_for_workload(self, workload_id, kind=None):
        rules = self._rules_by_workload.get(workload_id, [])
        if kind is None:
            return list(rules)
        return [rule for rule in rules if rule.kind == kind]

    def check(self, workload, candidate_host_id, snapshot):
        '''
        Decides whether placing 'workload' on 'candidate_host_id' breaks an
        ApartRequired rule in the given (simulated) snapshot. TogetherRequired
        rules are soft and never produce a violation here.
        '''
        candidate_host = snapshot.get_host(candidate_host_id)
        if candidate_host is None:
            logger.warning(f"[ConstraintManager] Candidate host '{candidate_host_id}' not in snapshot. Nothing to check.")
            return ConstraintCheck.allow()

        for rule in self.rules_for_workload(workload.id, RuleKind.APART_REQUIRED):
            for member in rule.members:
                if member == workload.id:
                    continue
                if candidate_host.has_workload(member):
                    logger.debug(f"[ConstraintManager] '{workload.id}' -> '{candidate_host_id}' violates ApartRequired rule "
                                 f"'{rule.name}' (member '{member}' already there).")
                    return ConstraintCheck.violation(rule.name)

        if not self.together_satisfied(workload, candidate_host_id, snapshot):
            logger.debug(f"[ConstraintManager] '{workload.id}' -> '{candidate_host_id}' leaves TogetherRequired co-members behind. Soft rule, allowed.")
        return ConstraintCheck.allow()

    def together_satisfied(self, workload, candidate_host_id, snapshot):
        """
        True unless a TogetherRequired rule has co-members in the snapshot and
        none of them sits on the candidate host.
        """
        for rule in self.rules_for_workload(workload.id, RuleKind.TOGETHER_REQUIRED):
            co_member_hosts = set()
            for member in rule.members:
                if member == workload.id:
                    continue
                host = snapshot.host_of_workload(member)
                if host is not None:
                    co_member_hosts.add(host.id)
            if co_member_hosts and candidate_host_id not in co_member_hosts:
                return False
        return True

    def calculate_violations(self, snapshot):
        """
        Lists current rule violations in the snapshot:
        ApartRequired members sharing a host, and TogetherRequired members
        that are not on the host holding most of their group.
        """
        violations = []
        host_order = {host.id: index for index, host in enumerate(snapshot.hosts)}

        for rule in self.rules:
            members_by_host = {}
            for member in rule.members:
                host = snapshot.host_of_workload(member)
                if host is not None:
                    members_by_host.setdefault(host.id, []).append(member)

            if rule.kind == RuleKind.APART_REQUIRED:
                for host_id, members in members_by_host.items():
                    if len(members) < 2:
                        continue
                    for member in members:
                        violations.append(RuleViolation(rule.name, rule.kind, member, host_id, 'AntiAffinity'))
            elif len(members_by_host) > 1:
                majority_host = max(members_by_host, key=lambda h: (len(members_by_host[h]), -host_order[h]))
                for host_id, members in members_by_host.items():
                    if host_id == majority_host:
                        continue
                    for member in members:
                        violations.append(RuleViolation(rule.name, rule.kind, member, host_id, 'Affinity'))

        if violations:
            logger.warning(f"[ConstraintManager] {len(violations)} rule violation(s) detected: "
                           f"{[(v.rule_name, v.workload_id, v.host_id) for v in violations]}")
        else:
            logger.info("[ConstraintManager] No affinity or anti-affinity violations detected.")
        return violations
