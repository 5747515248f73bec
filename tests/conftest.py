"""Shared fixtures for CustomDRS tests.

Provides:
- FakeClient: in-memory control-plane client with injectable failures
- make_host / make_snapshot: builders for ClusterSnapshot fixtures
- example_snapshot: two-host cluster, A at 90% CPU / 50% Mem, B at 10% / 10%
- chained_snapshot / chained_client: a plan whose second move depends on the first
"""

import pytest

from customdrs.errors import ExecutionFailure
from customdrs.models import (
    CONNECTED,
    POWERED_ON,
    STANDBY,
    ClusterSnapshot,
    HostInfo,
    HostSnapshot,
    WorkloadInfo,
    WorkloadRef,
)


class FakeClient:
    """
    Control-plane client kept in memory.

    'failures' holds (operation, item_id) pairs that raise ExecutionFailure,
    e.g. ('relocate', 'vm1') or ('set_host_power', 'esx3').
    """

    def __init__(self, hosts=None, workloads=None, failures=None):
        self.hosts = list(hosts or [])
        self.workloads = {host_id: list(items) for host_id, items in (workloads or {}).items()}
        self.failures = set(failures or [])
        self.calls = []
        self.list_hosts_error = None
        # host -> workload ids after every successful relocate
        self.history = []

    def _maybe_fail(self, operation, item_id):
        if (operation, item_id) in self.failures:
            raise ExecutionFailure(item_id, f"{operation} rejected")

    def list_hosts(self, cluster=None):
        self.calls.append(('list_hosts', cluster))
        if self.list_hosts_error is not None:
            raise self.list_hosts_error
        return list(self.hosts)

    def list_workloads(self, host_id):
        self.calls.append(('list_workloads', host_id))
        self._maybe_fail('list_workloads', host_id)
        return list(self.workloads.get(host_id, []))

    def relocate(self, workload_id, destination_host_id):
        self.calls.append(('relocate', workload_id, destination_host_id))
        self._maybe_fail('relocate', workload_id)
        for host_id, items in self.workloads.items():
            for item in items:
                if item.id == workload_id:
                    items.remove(item)
                    self.workloads.setdefault(destination_host_id, []).append(item)
                    self.history.append(self.placement())
                    return

    def placement(self):
        return {host_id: [item.id for item in items] for host_id, items in self.workloads.items()}

    def set_host_power(self, host_id, on):
        self.calls.append(('set_host_power', host_id, on))
        self._maybe_fail('set_host_power', host_id)

    def set_host_maintenance(self, host_id, enabled):
        self.calls.append(('set_host_maintenance', host_id, enabled))
        self._maybe_fail('set_host_maintenance', host_id)


def build_host(host_id, workloads=(), cpu_capacity=10000.0, memory_capacity=100.0,
               power_state=POWERED_ON, connection_state=CONNECTED, in_maintenance=False):
    refs = [WorkloadRef(w_id, host_id, float(cpu), float(mem)) for w_id, cpu, mem in workloads]
    return HostSnapshot(
        id=host_id,
        cpu_capacity_mhz=float(cpu_capacity),
        memory_capacity_gb=float(memory_capacity),
        cpu_usage_mhz=sum(w.cpu_demand_mhz for w in refs),
        memory_usage_gb=sum(w.memory_demand_gb for w in refs),
        power_state=power_state,
        connection_state=connection_state,
        in_maintenance=in_maintenance,
        workloads=refs,
    )


@pytest.fixture
def make_host():
    """Factory: make_host('esx1', [('vm1', cpu_mhz, mem_gb), ...], cpu_capacity=..., ...)."""
    return build_host


@pytest.fixture
def make_snapshot():
    def _make(*hosts, cluster='Prod'):
        return ClusterSnapshot(cluster=cluster, hosts=list(hosts))
    return _make


@pytest.fixture
def example_snapshot(make_snapshot):
    return make_snapshot(
        build_host('A', [('w1', 3000, 10), ('w2', 6000, 40)]),
        build_host('B', [('w3', 1000, 10)]),
    )


@pytest.fixture
def fake_client():
    """FakeClient mirroring example_snapshot plus one standby host."""
    return FakeClient(
        hosts=[
            HostInfo('A', 10000.0, 100.0),
            HostInfo('B', 10000.0, 100.0),
            HostInfo('C', 10000.0, 100.0, power_state=STANDBY),
        ],
        workloads={
            'A': [WorkloadInfo('w1', 3000.0, 10.0), WorkloadInfo('w2', 6000.0, 40.0)],
            'B': [WorkloadInfo('w3', 1000.0, 10.0)],
        },
    )


@pytest.fixture
def client_factory():
    return FakeClient


# Three hosts where v6 must leave h2 before v1 may arrive there (v1 and v6 are
# kept apart). Planning moves v6 first, but v1's move ranks higher.
CHAINED_HOSTS = [
    ('h0', [('v1', 1500, 17), ('v2', 2000, 17), ('v3', 1400, 10)]),
    ('h1', [('v4', 300, 1)]),
    ('h2', [('v5', 2700, 10), ('v6', 2300, 20)]),
]


@pytest.fixture
def chained_snapshot(make_snapshot):
    return make_snapshot(*[build_host(host_id, workloads) for host_id, workloads in CHAINED_HOSTS])


@pytest.fixture
def chained_client():
    return FakeClient(
        hosts=[HostInfo(host_id, 10000.0, 100.0) for host_id, _ in CHAINED_HOSTS],
        workloads={host_id: [WorkloadInfo(w_id, float(cpu), float(mem)) for w_id, cpu, mem in workloads]
                   for host_id, workloads in CHAINED_HOSTS},
    )
