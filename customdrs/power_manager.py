import logging

from .models import Evacuation, PowerAction, PowerRecommendation

logger = logging.getLogger('customdrs')

class PowerManager:
    """
    Distributed power management. Recommends at most one host power
    transition per call; repeated calls converge towards the target.
    """

    def __init__(self, constraint_manager, target_utilization=60.0, minimum_hosts=2,
                 power_off_margin=15.0, power_on_margin=10.0):
        self.constraint_manager = constraint_manager
        self.target_utilization = float(target_utilization)
        self.minimum_hosts = int(minimum_hosts)
        self.power_off_margin = float(power_off_margin)
        self.power_on_margin = float(power_on_margin)

    @staticmethod
    def average_utilization(hosts):
        if not hosts:
            return 0.0
        avg_cpu = sum(h.cpu_pct for h in hosts) / len(hosts)
        avg_mem = sum(h.memory_pct for h in hosts) / len(hosts)
        return (avg_cpu + avg_mem) / 2.0

    def _plan_evacuation(self, snapshot, candidate):
        """
        Finds a destination for every workload of 'candidate' among the other
        active hosts, reserving capacity as it goes. Returns the evacuation
        list, or None if any single workload has nowhere to go.
        """
        simulation = snapshot.copy()
        destinations = [h for h in simulation.active_hosts if h.id != candidate.id]
        evacuations = []

        for workload in list(candidate.workloads):
            chosen = None
            for host in destinations:
                if host.spare_cpu_mhz < workload.cpu_demand_mhz or host.spare_memory_gb < workload.memory_demand_gb:
                    continue
                if not self.constraint_manager.check(workload, host.id, simulation):
                    continue
                chosen = host
                break
            if chosen is None:
                logger.info(f"[PowerManager] No destination for '{workload.id}' while evacuating '{candidate.id}'.")
                return None
            simulation.move_workload(workload.id, chosen.id)
            evacuations.append(Evacuation(workload.id, chosen.id))
        return evacuations

    def recommend(self, snapshot):
        active_hosts = snapshot.active_hosts
        if not active_hosts:
            logger.warning("[PowerManager] No active hosts in snapshot. No power recommendation.")
            return None

        avg_util = self.average_utilization(active_hosts)
        power_off_below = self.target_utilization - self.power_off_margin
        power_on_above = self.target_utilization + self.power_on_margin
        logger.info(f"[PowerManager] Average utilization {avg_util:.1f}% over {len(active_hosts)} active host(s) "
                    f"(target {self.target_utilization:.1f}%, off < {power_off_below:.1f}%, on > {power_on_above:.1f}%).")

        if avg_util < power_off_below:
            if len(active_hosts) <= self.minimum_hosts:
                logger.info(f"[PowerManager] Utilization is low but only {len(active_hosts)} host(s) are on "
                            f"(minimum {self.minimum_hosts}). No power-off.")
                return None

            candidate = min(active_hosts, key=lambda h: (len(h.workloads), h.cpu_pct))
            evacuations = []
            if candidate.workloads:
                evacuations = self._plan_evacuation(snapshot, candidate)
                if evacuations is None:
                    logger.info(f"[PowerManager] Host '{candidate.id}' cannot be fully evacuated. No power-off.")
                    return None

            rationale = (f"Average utilization {avg_util:.1f}% is below {power_off_below:.1f}%; "
                         f"'{candidate.id}' is the least loaded host ({len(candidate.workloads)} VMs, CPU {candidate.cpu_pct:.1f}%).")
            logger.info(f"[PowerManager] Recommending PowerOff of '{candidate.id}' with {len(evacuations)} evacuation(s).")
            return PowerRecommendation(PowerAction.POWER_OFF, candidate.id, rationale, avg_util, evacuations)

        if avg_util > power_on_above:
            standby_hosts = snapshot.standby_hosts
            if not standby_hosts:
                logger.info("[PowerManager] Utilization is high but no standby host is available.")
                return None
            candidate = standby_hosts[0]
            rationale = f"Average utilization {avg_util:.1f}% is above {power_on_above:.1f}%; bringing '{candidate.id}' online."
            logger.info(f"[PowerManager] Recommending PowerOn of '{candidate.id}'.")
            return PowerRecommendation(PowerAction.POWER_ON, candidate.id, rationale, avg_util,
                                       host_in_maintenance=candidate.in_maintenance)

        logger.info("[PowerManager] Utilization within target band. No power action needed.")
        return None
