import logging
import statistics

from .config_loader import ConfigLoader
from .models import BalanceScore

logger = logging.getLogger('customdrs')

DEFAULT_AGGRESSIVENESS = 3

class LoadEvaluator:
    """
    Scores how evenly CPU and memory are spread over the active hosts of a
    snapshot and maps aggressiveness levels to balancing thresholds.
    """

    def __init__(self, aggressiveness_levels=None):
        if aggressiveness_levels is None:
            aggressiveness_levels = ConfigLoader.DEFAULTS['balancing']['aggressiveness_levels']
        self.aggressiveness_levels = aggressiveness_levels

    @staticmethod
    def get_resource_percentage_lists(snapshot):
        hosts = snapshot.active_hosts
        cpu_percentages = [h.cpu_pct for h in hosts]
        mem_percentages = [h.memory_pct for h in hosts]
        return cpu_percentages, mem_percentages

    @staticmethod
    def score_percentages(cpu_percentages, mem_percentages):
        """Population standard deviation of both series. None below two hosts."""
        if len(cpu_percentages) < 2 or len(mem_percentages) < 2:
            return None
        return BalanceScore(
            cpu_std_dev=statistics.pstdev(cpu_percentages),
            memory_std_dev=statistics.pstdev(mem_percentages),
        )

    def calculate_balance_score(self, snapshot):
        cpu_p, mem_p = self.get_resource_percentage_lists(snapshot)
        score = self.score_percentages(cpu_p, mem_p)
        if score is None:
            logger.debug(f"[LoadEvaluator] Only {len(cpu_p)} active host(s); balance score undefined, treated as balanced.")
        else:
            logger.debug(f"[LoadEvaluator] Balance score {score.score:.2f} (CPU σ={score.cpu_std_dev:.2f}, Mem σ={score.memory_std_dev:.2f})")
        return score

    def get_thresholds(self, aggressiveness=DEFAULT_AGGRESSIVENESS):
        level = self.aggressiveness_levels.get(aggressiveness)
        if level is None:
            logger.warning(f"[LoadEvaluator] Invalid aggressiveness level: {aggressiveness}. Defaulting to level {DEFAULT_AGGRESSIVENESS}.")
            level = self.aggressiveness_levels.get(DEFAULT_AGGRESSIVENESS,
                                                   ConfigLoader.DEFAULTS['balancing']['aggressiveness_levels'][DEFAULT_AGGRESSIVENESS])

        thresholds = {
            'cpu': float(level['cpu_trigger_percent']),
            'memory': float(level['memory_trigger_percent']),
            'min_improvement': float(level['min_improvement'])
        }
        logger.debug(f"[LoadEvaluator] Aggressiveness: {aggressiveness}, Thresholds: {thresholds}")
        return thresholds

    def evaluate_imbalance(self, snapshot, aggressiveness=DEFAULT_AGGRESSIVENESS):
        """
        Returns per-resource details: the most and least loaded active host,
        the gap between them and whether that gap exceeds the trigger.
        An empty dict means fewer than two active hosts.
        """
        hosts = snapshot.active_hosts
        if len(hosts) < 2:
            logger.debug(f"[LoadEvaluator] Not enough active hosts (count: {len(hosts)}), considered balanced.")
            return {}

        thresholds = self.get_thresholds(aggressiveness)
        imbalance_results = {}

        for resource_name, attr in (('cpu', 'cpu_pct'), ('memory', 'memory_pct')):
            # max()/min() return the first host on ties, keeping enumeration order
            max_host = max(hosts, key=lambda h: getattr(h, attr))
            min_host = min(hosts, key=lambda h: getattr(h, attr))
            current_diff = getattr(max_host, attr) - getattr(min_host, attr)
            resource_threshold = thresholds[resource_name]

            is_res_imbalanced = current_diff > resource_threshold
            if is_res_imbalanced:
                logger.info(f"[LoadEvaluator] Resource '{resource_name}' is imbalanced. Difference {current_diff:.2f}% > Threshold {resource_threshold:.2f}% (Aggressiveness: {aggressiveness})")
            else:
                logger.debug(f"[LoadEvaluator] Resource '{resource_name}' is balanced. Difference {current_diff:.2f}% <= Threshold {resource_threshold:.2f}% (Aggressiveness: {aggressiveness})")

            imbalance_results[resource_name] = {
                'is_imbalanced': is_res_imbalanced,
                'current_diff': current_diff,
                'threshold': resource_threshold,
                'max_host': max_host.id,
                'min_host': min_host.id,
                'avg_usage': sum(getattr(h, attr) for h in hosts) / len(hosts)
            }
        return imbalance_results

    def is_balanced(self, snapshot, aggressiveness=DEFAULT_AGGRESSIVENESS):
        imbalance_details = self.evaluate_imbalance(snapshot, aggressiveness)
        return not any(details['is_imbalanced'] for details in imbalance_details.values())
