import logging

from .cluster_state import ClusterState
from .config_loader import ConfigLoader
from .constraint_manager import ConstraintManager
from .load_evaluator import LoadEvaluator
from .migration_planner import MigrationManager
from .models import WorkloadRef
from .placement import PlacementManager
from .power_manager import PowerManager
from .scheduler import Scheduler

logger = logging.getLogger('customdrs')

class DRSEngine:
    """
    Entry point for front ends. Every call takes a fresh snapshot and a
    fresh rule set; nothing is kept between calls.
    """

    def __init__(self, client, rule_store=None, config=None, dry_run=False):
        self.client = client
        self.rule_store = rule_store
        self.config = config if config is not None else ConfigLoader(None)
        self.load_evaluator = LoadEvaluator(self.config.get_aggressiveness_levels())
        self.scheduler = Scheduler(client, dry_run=dry_run)

    def _load_rules(self, cluster, rules):
        if rules is not None:
            return list(rules)
        if self.rule_store is None:
            return []
        return self.rule_store.list_enabled_rules(scope=cluster)

    def snapshot(self, cluster=None):
        return ClusterState(self.client, cluster).build_snapshot()

    def plan(self, cluster=None, aggressiveness=None, rules=None, snapshot=None):
        if aggressiveness is None:
            aggressiveness = self.config.get_default_aggressiveness()
        if snapshot is None:
            snapshot = self.snapshot(cluster)
        ClusterState.log_cluster_stats(snapshot)
        constraint_manager = ConstraintManager(self._load_rules(cluster, rules))
        planner = MigrationManager(
            constraint_manager,
            self.load_evaluator,
            aggressiveness=aggressiveness,
            max_iterations=self.config.get_max_iterations(),
            cpu_watermark=self.config.get_host_cpu_watermark(),
            memory_watermark=self.config.get_host_memory_watermark(),
            priority_thresholds=self.config.get_priority_thresholds(),
        )
        return planner.plan_migrations(snapshot)

    def apply(self, plan, rules=None, snapshot=None):
        """Execute in planning order, re-checking ApartRequired rules against the live cluster."""
        if plan.is_empty:
            return self.scheduler.execute_migrations([])
        if snapshot is None:
            snapshot = self.snapshot(plan.cluster)
        constraint_manager = ConstraintManager(self._load_rules(plan.cluster, rules))
        return self.scheduler.execute_migrations(plan.execution_order(), snapshot, constraint_manager)

    def place_new(self, cluster, cpu_demand_mhz, memory_demand_gb, workload_id='new-vm', rules=None, snapshot=None):
        if snapshot is None:
            snapshot = self.snapshot(cluster)
        workload = WorkloadRef(workload_id, None, float(cpu_demand_mhz), float(memory_demand_gb))
        placement = PlacementManager(ConstraintManager(self._load_rules(cluster, rules)),
                                     balance_penalty_weight=self.config.get_balance_penalty_weight())
        return placement.rank_hosts(snapshot, workload)

    def recommend_power(self, cluster=None, target_utilization=None, minimum_hosts=None, rules=None, snapshot=None):
        if target_utilization is None:
            target_utilization = self.config.get_target_utilization()
        if minimum_hosts is None:
            minimum_hosts = self.config.get_minimum_hosts()
        if snapshot is None:
            snapshot = self.snapshot(cluster)
        off_margin, on_margin = self.config.get_power_margins()
        power_manager = PowerManager(ConstraintManager(self._load_rules(cluster, rules)),
                                     target_utilization=target_utilization,
                                     minimum_hosts=minimum_hosts,
                                     power_off_margin=off_margin,
                                     power_on_margin=on_margin)
        return power_manager.recommend(snapshot)

    def execute_power(self, recommendation):
        return self.scheduler.execute_power_recommendation(recommendation)

    def detect_violations(self, cluster=None, rules=None, snapshot=None):
        if snapshot is None:
            snapshot = self.snapshot(cluster)
        return ConstraintManager(self._load_rules(cluster, rules)).calculate_violations(snapshot)
