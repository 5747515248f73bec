import logging

from .errors import CollaboratorUnavailable, DataUnavailable
from .models import CONNECTED, POWERED_ON, ClusterSnapshot, HostSnapshot, WorkloadRef

logger = logging.getLogger('customdrs')

class ClusterState:
    """
    Builds a ClusterSnapshot from what the control-plane client reports.
    Host and workload usage is aggregated from resident workload demand.
    """

    def __init__(self, client, cluster_name=None):
        self.client = client
        self.cluster_name = cluster_name  # Optional: filter by specific cluster name

    def _get_all_hosts(self):
        """Enumerate hosts. Any failure here aborts the whole pass."""
        try:
            hosts = list(self.client.list_hosts(self.cluster_name))
        except Exception as e:
            logger.error(f"[ClusterState] Host enumeration failed for cluster '{self.cluster_name}': {e}")
            raise CollaboratorUnavailable(f"Cannot enumerate hosts of cluster '{self.cluster_name}': {e}") from e

        # Filter out hosts that are not in connected state
        connected_hosts = []
        for host in hosts:
            if host.connection_state != CONNECTED:
                logger.info(f"[ClusterState] Host '{host.id}' is '{host.connection_state}'. Skipping.")
                continue
            connected_hosts.append(host)
        return connected_hosts

    @staticmethod
    def _validate_host(host_info):
        cpu_capacity = host_info.cpu_capacity_mhz
        memory_capacity = host_info.memory_capacity_gb
        if cpu_capacity is None or memory_capacity is None:
            raise DataUnavailable(host_info.id, "capacity telemetry missing")
        if cpu_capacity <= 0 or memory_capacity <= 0:
            raise DataUnavailable(host_info.id, f"non-positive capacity (cpu={cpu_capacity}, mem={memory_capacity})")

    @staticmethod
    def _validate_workload(workload_info):
        if workload_info.cpu_demand_mhz is None or workload_info.memory_demand_gb is None:
            raise DataUnavailable(workload_info.id, "demand telemetry missing")
        if workload_info.cpu_demand_mhz < 0 or workload_info.memory_demand_gb < 0:
            raise DataUnavailable(workload_info.id, "negative demand reported")

    def _get_workloads_on_host(self, host_info, excluded):
        """
        Return the powered-on workloads of a host as WorkloadRefs.
        Workloads without telemetry are left out and recorded in 'excluded'.
        """
        workloads = []
        try:
            reported = list(self.client.list_workloads(host_info.id))
        except Exception as e:
            raise DataUnavailable(host_info.id, f"workload listing failed: {e}") from e

        for workload_info in reported:
            if workload_info.power_state != POWERED_ON:
                continue
            try:
                self._validate_workload(workload_info)
            except DataUnavailable as e:
                logger.warning(f"[ClusterState] Excluding workload '{e.entity_id}' on host '{host_info.id}': {e.reason}")
                excluded.append(workload_info.id)
                continue
            workloads.append(WorkloadRef(
                id=workload_info.id,
                host_id=host_info.id,
                cpu_demand_mhz=float(workload_info.cpu_demand_mhz),
                memory_demand_gb=float(workload_info.memory_demand_gb),
            ))
        return workloads

    def build_snapshot(self):
        """
        Get the current state of the cluster as a ClusterSnapshot.
        Standby and powered-off hosts are included without workloads so that
        the power manager can recommend bringing them back.
        """
        logger.info(f"[ClusterState] Building snapshot for cluster '{self.cluster_name or 'ALL'}'...")
        host_snapshots = []
        excluded = []

        for host_info in self._get_all_hosts():
            try:
                self._validate_host(host_info)
                workloads = []
                if host_info.power_state == POWERED_ON:
                    workloads = self._get_workloads_on_host(host_info, excluded)
            except DataUnavailable as e:
                logger.warning(f"[ClusterState] Excluding host '{e.entity_id}' from snapshot: {e.reason}")
                excluded.append(host_info.id)
                continue

            host_snapshot = HostSnapshot(
                id=host_info.id,
                cpu_capacity_mhz=float(host_info.cpu_capacity_mhz),
                memory_capacity_gb=float(host_info.memory_capacity_gb),
                cpu_usage_mhz=sum(w.cpu_demand_mhz for w in workloads),
                memory_usage_gb=sum(w.memory_demand_gb for w in workloads),
                power_state=host_info.power_state,
                connection_state=host_info.connection_state,
                in_maintenance=host_info.in_maintenance,
                workloads=workloads,
            )
            if host_snapshot.cpu_pct > 100.0 or host_snapshot.memory_pct > 100.0:
                logger.warning(f"[ClusterState] Host '{host_snapshot.id}' reports usage above capacity "
                               f"(CPU {host_snapshot.cpu_pct:.1f}%, Mem {host_snapshot.memory_pct:.1f}%).")
            host_snapshots.append(host_snapshot)

        snapshot = ClusterSnapshot(cluster=self.cluster_name, hosts=host_snapshots, excluded=excluded)
        logger.info(f"[ClusterState] Snapshot captured: {len(snapshot.active_hosts)} active host(s), "
                    f"{len(snapshot.standby_hosts)} standby host(s), {len(excluded)} excluded entit(ies).")
        return snapshot

    @staticmethod
    def log_cluster_stats(snapshot):
        """Log detailed cluster statistics including resource distribution"""
        total_cpu_capacity = 0
        total_mem_capacity = 0
        total_cpu_usage = 0
        total_mem_usage = 0

        logger.info(f"--- Host Summary (captured {snapshot.captured_at:%Y-%m-%d %H:%M:%S} UTC) ---")

        header = f"{'Hostname':<25} {'State':<12} {'CPU %':<10} {'Mem %':<10} {'VM Count':<10}"
        logger.info(header)
        logger.info("-" * len(header))

        for host in snapshot.hosts:
            logger.info(f"{host.id:<25} {host.power_state:<12} {host.cpu_pct:<10.1f} {host.memory_pct:<10.1f} {len(host.workloads):<10}")
            if not host.is_active:
                continue
            total_cpu_capacity += host.cpu_capacity_mhz
            total_mem_capacity += host.memory_capacity_gb
            total_cpu_usage += host.cpu_usage_mhz
            total_mem_usage += host.memory_usage_gb

        for host in snapshot.active_hosts:
            logger.debug(f"Host: {host.id}")
            logger.debug(f"├─ CPU: {host.cpu_pct:.1f}% ({host.cpu_usage_mhz:.0f}/{host.cpu_capacity_mhz:.0f} MHz)")
            logger.debug(f"├─ Memory: {host.memory_pct:.1f}% ({host.memory_usage_gb:.1f}/{host.memory_capacity_gb:.1f} GB)")
            logger.debug(f"└─ VMs: {len(host.workloads)} ({', '.join(w.id for w in host.workloads)})")

        # Overall cluster metrics
        cluster_cpu_usage = (total_cpu_usage / total_cpu_capacity * 100) if total_cpu_capacity > 0 else 0
        cluster_mem_usage = (total_mem_usage / total_mem_capacity * 100) if total_mem_capacity > 0 else 0

        logger.info("--- Cluster Total Resource Usage ---")
        logger.info(f"CPU: {cluster_cpu_usage:.1f}% ({total_cpu_usage:.0f}/{total_cpu_capacity:.0f} MHz)")
        logger.info(f"Memory: {cluster_mem_usage:.1f}% ({total_mem_usage:.1f}/{total_mem_capacity:.1f} GB)")
        logger.info(f"Total Hosts: {len(snapshot.hosts)} ({len(snapshot.active_hosts)} active)")
        if snapshot.excluded:
            logger.info(f"Excluded (no telemetry): {', '.join(snapshot.excluded)}")
