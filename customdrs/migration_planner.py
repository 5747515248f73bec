import logging

from .load_evaluator import DEFAULT_AGGRESSIVENESS
from .models import Priority, RelocationPlan, RelocationRecommendation

logger = logging.getLogger('customdrs')

# Float slack when comparing balance scores of simulated states
SCORE_EPSILON = 1e-9

class MigrationManager:
    def __init__(self, constraint_manager, load_evaluator, aggressiveness=DEFAULT_AGGRESSIVENESS, max_iterations=10,
                 cpu_watermark=90.0, memory_watermark=90.0, priority_thresholds=(15.0, 8.0)):
        self.constraint_manager = constraint_manager
        self.load_evaluator = load_evaluator
        self.aggressiveness = aggressiveness
        self.max_iterations = int(max_iterations)
        # Absolute post-move limits for a single destination host, distinct from balancing triggers
        self.cpu_watermark = float(cpu_watermark)
        self.memory_watermark = float(memory_watermark)
        self.priority_high, self.priority_medium = priority_thresholds

    def _priority_for(self, improvement):
        if improvement > self.priority_high:
            return Priority.HIGH
        if improvement > self.priority_medium:
            return Priority.MEDIUM
        return Priority.LOW

    def _would_fit_on_host(self, workload, host):
        projected_cpu_pct, projected_mem_pct = host.projected_pct(workload.cpu_demand_mhz, workload.memory_demand_gb)
        if projected_cpu_pct > self.cpu_watermark:
            logger.debug(f"[MigrationPlanner_FitCheck] '{workload.id}' would not fit on host '{host.id}' due to CPU (proj: {projected_cpu_pct:.1f}% > max: {self.cpu_watermark:.1f}%)")
            return False
        if projected_mem_pct > self.memory_watermark:
            logger.debug(f"[MigrationPlanner_FitCheck] '{workload.id}' would not fit on host '{host.id}' due to Memory (proj: {projected_mem_pct:.1f}% > max: {self.memory_watermark:.1f}%)")
            return False
        return True

    def _simulated_percentages(self, snapshot, workload, source, target):
        """
        CPU/memory percentage lists of the active hosts as they would be
        after moving 'workload' from 'source' to 'target'.
        """
        source_cpu, source_mem = source.projected_pct(-workload.cpu_demand_mhz, -workload.memory_demand_gb)
        target_cpu, target_mem = target.projected_pct(workload.cpu_demand_mhz, workload.memory_demand_gb)
        cpu_percentages = []
        mem_percentages = []
        for host in snapshot.active_hosts:
            if host.id == source.id:
                cpu_percentages.append(source_cpu)
                mem_percentages.append(source_mem)
            elif host.id == target.id:
                cpu_percentages.append(target_cpu)
                mem_percentages.append(target_mem)
            else:
                cpu_percentages.append(host.cpu_pct)
                mem_percentages.append(host.memory_pct)
        return cpu_percentages, mem_percentages

    def _evaluate_candidate(self, snapshot, workload, source, target, cpu_gap, mem_gap, current_score):
        """
        Returns the improvement of moving 'workload' from 'source' to
        'target', or None when the move is rejected.
        """
        if not self._would_fit_on_host(workload, target):
            return None

        check = self.constraint_manager.check(workload, target.id, snapshot)
        if not check:
            logger.debug(f"[MigrationPlanner] '{workload.id}' -> '{target.id}' skipped: violates rule '{check.rule_name}'.")
            return None

        cpu_p, mem_p = self._simulated_percentages(snapshot, workload, source, target)
        new_cpu_gap = max(cpu_p) - min(cpu_p)
        new_mem_gap = max(mem_p) - min(mem_p)
        improvement = ((cpu_gap - new_cpu_gap) + (mem_gap - new_mem_gap)) / 2.0

        # Ping-pong prevention: never accept a move that worsens the overall score
        new_score = self.load_evaluator.score_percentages(cpu_p, mem_p)
        if current_score is not None and new_score is not None and new_score.score > current_score.score + SCORE_EPSILON:
            logger.debug(f"[MigrationPlanner] '{workload.id}' -> '{target.id}' skipped: score would rise "
                         f"from {current_score.score:.2f} to {new_score.score:.2f}.")
            return None

        if not self.constraint_manager.together_satisfied(workload, target.id, snapshot):
            logger.debug(f"[MigrationPlanner] '{workload.id}' -> '{target.id}' splits a TogetherRequired group. No improvement credited.")
            improvement = 0.0

        logger.debug(f"[MigrationPlanner] Candidate '{workload.id}' -> '{target.id}': gaps CPU {cpu_gap:.1f}->{new_cpu_gap:.1f}, "
                     f"Mem {mem_gap:.1f}->{new_mem_gap:.1f}, improvement {improvement:.2f}")
        return improvement

    def _find_best_candidate(self, snapshot, source, target, cpu_gap, mem_gap, min_improvement):
        current_score = self.load_evaluator.score_percentages(*self.load_evaluator.get_resource_percentage_lists(snapshot))
        best_workload = None
        best_improvement = None

        for workload in source.workloads:
            if not workload.has_demand:
                logger.debug(f"[MigrationPlanner] '{workload.id}' has no known positive demand. Skipping.")
                continue
            improvement = self._evaluate_candidate(snapshot, workload, source, target, cpu_gap, mem_gap, current_score)
            if improvement is None or improvement <= min_improvement:
                continue
            # Strict comparison keeps the first candidate in enumeration order on ties
            if best_improvement is None or improvement > best_improvement:
                best_workload = workload
                best_improvement = improvement

        if best_workload is None:
            return None
        return best_workload, best_improvement

    def plan_migrations(self, snapshot):
        """
        Bounded greedy planning on a private copy of 'snapshot'.
        Each iteration moves at most one workload from the most to the least
        loaded host of the dimension with the widest gap. A workload moved
        several times is reported once, from its original to its final host,
        with 'sequence' set to the step of its last move. Later moves may
        only be rule-safe once earlier ones are done, so execution follows
        'sequence' and not the improvement ranking.
        """
        logger.info(f"[MigrationPlanner] Starting migration planning (aggressiveness {self.aggressiveness}, max {self.max_iterations} iterations)...")
        thresholds = self.load_evaluator.get_thresholds(self.aggressiveness)
        score_before = self.load_evaluator.calculate_balance_score(snapshot)
        if score_before is None:
            logger.info("[MigrationPlanner] Fewer than two active hosts. Nothing to balance.")
            return RelocationPlan([], None, None, 0, 'insufficient_hosts', cluster=snapshot.cluster)

        simulation = snapshot.copy()
        planned = {}
        iterations = 0
        stop_reason = 'max_iterations'

        for iteration in range(1, self.max_iterations + 1):
            iterations = iteration
            imbalance = self.load_evaluator.evaluate_imbalance(simulation, self.aggressiveness)
            if not imbalance:
                stop_reason = 'insufficient_hosts'
                break
            if not any(details['is_imbalanced'] for details in imbalance.values()):
                logger.info(f"[MigrationPlanner] Iteration {iteration}: cluster is balanced.")
                stop_reason = 'balanced'
                break

            cpu_gap = imbalance['cpu']['current_diff']
            mem_gap = imbalance['memory']['current_diff']
            resource = 'cpu' if cpu_gap >= mem_gap else 'memory'
            source = simulation.get_host(imbalance[resource]['max_host'])
            target = simulation.get_host(imbalance[resource]['min_host'])
            logger.info(f"[MigrationPlanner] Iteration {iteration}: {resource} gap {imbalance[resource]['current_diff']:.1f}% "
                        f"between source '{source.id}' and target '{target.id}' (cluster avg {imbalance[resource]['avg_usage']:.1f}%).")

            best = self._find_best_candidate(simulation, source, target, cpu_gap, mem_gap, thresholds['min_improvement'])
            if best is None:
                logger.info(f"[MigrationPlanner] Iteration {iteration}: no move improves balance by more than {thresholds['min_improvement']}. Stopping.")
                stop_reason = 'no_improvement'
                break

            workload, improvement = best
            original_source = source.id
            simulation.move_workload(workload.id, target.id)
            logger.info(f"[MigrationPlanner] Planned move of '{workload.id}' from '{original_source}' to '{target.id}' (improvement {improvement:.2f}).")

            previous = planned.get(workload.id)
            if previous is None:
                planned[workload.id] = RelocationRecommendation(
                    workload_id=workload.id,
                    source_host=original_source,
                    destination_host=target.id,
                    resource=resource,
                    improvement=improvement,
                    priority=Priority.LOW,
                    cpu_demand_mhz=workload.cpu_demand_mhz,
                    memory_demand_gb=workload.memory_demand_gb,
                    sequence=iteration,
                )
            else:
                previous.destination_host = target.id
                previous.resource = resource
                previous.improvement += improvement
                previous.sequence = iteration
                if previous.destination_host == previous.source_host:
                    del planned[workload.id]

        recommendations = list(planned.values())
        for recommendation in recommendations:
            recommendation.priority = self._priority_for(recommendation.improvement)
        recommendations.sort(key=lambda r: r.improvement, reverse=True)
        score_after = self.load_evaluator.calculate_balance_score(simulation)

        if not recommendations:
            logger.info(f"[MigrationPlanner] No migrations planned ({stop_reason}).")
        else:
            logger.info(f"[MigrationPlanner] Total migrations planned: {len(recommendations)} "
                        f"(score {score_before.score:.2f} -> {score_after.score:.2f}, stop: {stop_reason})")
            for i, rec in enumerate(recommendations):
                logger.info(f"  {i + 1}. VM: {rec.workload_id}, {rec.source_host} -> {rec.destination_host}, "
                            f"Resource: {rec.resource}, Improvement: {rec.improvement:.2f}, Priority: {rec.priority.value}")

        return RelocationPlan(recommendations, score_before, score_after, iterations, stop_reason, cluster=snapshot.cluster)

    @staticmethod
    def apply_to_snapshot(snapshot, recommendations):
        """Return a copy of 'snapshot' with the recommended moves applied in planning order."""
        simulation = snapshot.copy()
        for rec in sorted(recommendations, key=lambda r: r.sequence):
            simulation.move_workload(rec.workload_id, rec.destination_host)
        return simulation
