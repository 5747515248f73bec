import logging

from .models import PlacementRecommendation

logger = logging.getLogger('customdrs')

class PlacementManager:
    """
    Ranks active hosts for a workload that is not placed yet.
    Lower scores are better; an empty ranking means no suitable host.
    """

    def __init__(self, constraint_manager, balance_penalty_weight=0.1):
        self.constraint_manager = constraint_manager
        self.balance_penalty_weight = float(balance_penalty_weight)

    def rank_hosts(self, snapshot, workload):
        logger.info(f"[PlacementManager] Ranking hosts for '{workload.id}' "
                    f"(CPU {workload.cpu_demand_mhz:.0f} MHz, Mem {workload.memory_demand_gb:.1f} GB)...")
        ranked = []

        for host in snapshot.active_hosts:
            if host.spare_cpu_mhz < workload.cpu_demand_mhz or host.spare_memory_gb < workload.memory_demand_gb:
                logger.debug(f"[PlacementManager] Host '{host.id}' lacks spare capacity "
                             f"(CPU {host.spare_cpu_mhz:.0f} MHz, Mem {host.spare_memory_gb:.1f} GB free).")
                continue

            check = self.constraint_manager.check(workload, host.id, snapshot)
            if not check:
                logger.debug(f"[PlacementManager] Host '{host.id}' excluded by rule '{check.rule_name}'.")
                continue

            projected_cpu, projected_mem = host.projected_pct(workload.cpu_demand_mhz, workload.memory_demand_gb)
            load_score = (projected_cpu + projected_mem) / 2.0
            balance_penalty = self.balance_penalty_weight * abs(projected_cpu - projected_mem)
            ranked.append(PlacementRecommendation(
                host_id=host.id,
                score=load_score + balance_penalty,
                load_score=load_score,
                balance_penalty=balance_penalty,
                projected_cpu_pct=projected_cpu,
                projected_memory_pct=projected_mem,
            ))

        # sort() is stable: equal scores keep host enumeration order
        ranked.sort(key=lambda r: r.score)

        if not ranked:
            logger.info(f"[PlacementManager] No suitable host for '{workload.id}'.")
        else:
            logger.info(f"[PlacementManager] Best host for '{workload.id}': '{ranked[0].host_id}' (score {ranked[0].score:.2f}), "
                        f"{len(ranked)} candidate(s).")
        return ranked
