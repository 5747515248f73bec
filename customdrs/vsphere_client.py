import logging
import ssl

from pyVim.connect import Disconnect, SmartConnect
from pyVim.task import WaitForTask
from pyVmomi import vim

from .errors import CollaboratorUnavailable, ExecutionFailure
from .models import HostInfo, WorkloadInfo

logger = logging.getLogger('customdrs')

BYTES_PER_GB = 1024 ** 3
MB_PER_GB = 1024.0


class ConnectionManager:
    def __init__(self, vcenter, username, password, port=443, verify_ssl=False):
        self.vcenter = vcenter
        self.username = username
        self.password = password
        self.port = port
        self.verify_ssl = verify_ssl
        self.service_instance = None

    def connect(self):
        context = None
        if not self.verify_ssl:
            context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        try:
            self.service_instance = SmartConnect(host=self.vcenter, user=self.username, pwd=self.password,
                                                 port=self.port, sslContext=context)
        except Exception as e:
            logger.error(f"[ConnectionManager] Failed to connect to vCenter '{self.vcenter}': {e}")
            raise CollaboratorUnavailable(f"Cannot connect to vCenter '{self.vcenter}': {e}") from e
        logger.info(f"[ConnectionManager] Connected to vCenter '{self.vcenter}'.")
        return self.service_instance

    def disconnect(self):
        if self.service_instance is not None:
            Disconnect(self.service_instance)
            self.service_instance = None
            logger.info(f"[ConnectionManager] Disconnected from vCenter '{self.vcenter}'.")


class VSphereClient:
    """
    Control-plane client backed by pyVmomi. Hosts and VMs are identified
    by their inventory names.
    """

    def __init__(self, service_instance, standby_timeout=600):
        self.service_instance = service_instance
        self.standby_timeout = standby_timeout

    def _get_container_objects(self, vim_type):
        content = self.service_instance.RetrieveContent()
        container = content.viewManager.CreateContainerView(content.rootFolder, [vim_type], True)
        try:
            return list(container.view)
        finally:
            container.Destroy()

    def _find_by_name(self, vim_type, name):
        for obj in self._get_container_objects(vim_type):
            if obj.name == name:
                return obj
        raise ExecutionFailure(name, f"{getattr(vim_type, '__name__', vim_type)} not found in inventory")

    @staticmethod
    def _host_capacity(host):
        """Returns (cpu MHz, memory GB); None for values the host does not report."""
        hardware = getattr(host.summary, 'hardware', None) if host.summary else None
        if hardware is None:
            return None, None
        cpu_capacity = None
        memory_capacity = None
        if hardware.numCpuCores and hardware.cpuMhz:
            cpu_capacity = float(hardware.numCpuCores * hardware.cpuMhz)
        if hardware.memorySize:
            memory_capacity = hardware.memorySize / BYTES_PER_GB
        return cpu_capacity, memory_capacity

    def list_hosts(self, cluster=None):
        hosts = []
        for host in self._get_container_objects(vim.HostSystem):
            if cluster:
                parent = getattr(host, 'parent', None)
                if parent is None or getattr(parent, 'name', None) != cluster:
                    continue
            cpu_capacity, memory_capacity = self._host_capacity(host)
            hosts.append(HostInfo(
                id=host.name,
                cpu_capacity_mhz=cpu_capacity,
                memory_capacity_gb=memory_capacity,
                power_state=str(host.runtime.powerState),
                connection_state=str(host.runtime.connectionState),
                in_maintenance=bool(host.runtime.inMaintenanceMode),
            ))
        if cluster and not hosts:
            logger.warning(f"[VSphereClient] No hosts found in cluster '{cluster}'")
        return hosts

    def list_workloads(self, host_id):
        host = self._find_by_name(vim.HostSystem, host_id)
        workloads = []
        for vm in host.vm:
            if vm.config is None or vm.config.template:
                continue
            stats = vm.summary.quickStats if vm.summary else None
            cpu_demand = None
            memory_demand = None
            if stats is not None:
                if stats.overallCpuUsage is not None:
                    cpu_demand = float(stats.overallCpuUsage)
                if stats.guestMemoryUsage is not None:
                    memory_demand = stats.guestMemoryUsage / MB_PER_GB
            workloads.append(WorkloadInfo(
                id=vm.name,
                cpu_demand_mhz=cpu_demand,
                memory_demand_gb=memory_demand,
                power_state=str(vm.runtime.powerState),
            ))
        return workloads

    def _wait(self, item_id, task):
        try:
            WaitForTask(task)
        except Exception as e:
            raise ExecutionFailure(item_id, str(e)) from e

    def relocate(self, workload_id, destination_host_id):
        vm = self._find_by_name(vim.VirtualMachine, workload_id)
        host = self._find_by_name(vim.HostSystem, destination_host_id)
        logger.info(f"[VSphereClient] Migrating VM '{workload_id}' to host '{destination_host_id}'...")
        task = vm.MigrateVM_Task(host=host, priority=vim.VirtualMachine.MovePriority.defaultPriority)
        self._wait(workload_id, task)

    def set_host_power(self, host_id, on):
        host = self._find_by_name(vim.HostSystem, host_id)
        if on:
            logger.info(f"[VSphereClient] Powering up host '{host_id}' from standby...")
            task = host.PowerUpHostFromStandBy_Task(timeoutSec=self.standby_timeout)
        else:
            logger.info(f"[VSphereClient] Putting host '{host_id}' into standby...")
            task = host.PowerDownHostToStandBy_Task(timeoutSec=self.standby_timeout, evacuatePoweredOffVms=False)
        self._wait(host_id, task)

    def set_host_maintenance(self, host_id, enabled):
        host = self._find_by_name(vim.HostSystem, host_id)
        if enabled:
            logger.info(f"[VSphereClient] Host '{host_id}' entering maintenance mode...")
            task = host.EnterMaintenanceMode_Task(timeout=self.standby_timeout)
        else:
            logger.info(f"[VSphereClient] Host '{host_id}' exiting maintenance mode...")
            task = host.ExitMaintenanceMode_Task(timeout=self.standby_timeout)
        self._wait(host_id, task)
