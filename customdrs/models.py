import copy
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Tuple

logger = logging.getLogger('customdrs')

# vSphere runtime state strings
POWERED_ON = 'poweredOn'
POWERED_OFF = 'poweredOff'
STANDBY = 'standBy'
CONNECTED = 'connected'
DISCONNECTED = 'disconnected'


class RuleKind(Enum):
    TOGETHER_REQUIRED = 'TogetherRequired'
    APART_REQUIRED = 'ApartRequired'


class Priority(Enum):
    HIGH = 'High'
    MEDIUM = 'Medium'
    LOW = 'Low'


class PowerAction(Enum):
    POWER_OFF = 'PowerOff'
    POWER_ON = 'PowerOn'


@dataclass
class HostInfo:
    """Host record as reported by the control-plane client."""
    id: str
    cpu_capacity_mhz: Optional[float]
    memory_capacity_gb: Optional[float]
    power_state: str = POWERED_ON
    connection_state: str = CONNECTED
    in_maintenance: bool = False


@dataclass
class WorkloadInfo:
    """Workload record as reported by the control-plane client."""
    id: str
    cpu_demand_mhz: Optional[float]
    memory_demand_gb: Optional[float]
    power_state: str = POWERED_ON


@dataclass(frozen=True)
class WorkloadRef:
    id: str
    host_id: Optional[str]
    cpu_demand_mhz: float
    memory_demand_gb: float

    @property
    def has_demand(self):
        return self.cpu_demand_mhz > 0 or self.memory_demand_gb > 0


@dataclass
class HostSnapshot:
    id: str
    cpu_capacity_mhz: float
    memory_capacity_gb: float
    cpu_usage_mhz: float = 0.0
    memory_usage_gb: float = 0.0
    power_state: str = POWERED_ON
    connection_state: str = CONNECTED
    in_maintenance: bool = False
    workloads: List[WorkloadRef] = field(default_factory=list)
    cpu_pct: float = field(default=0.0, init=False)
    memory_pct: float = field(default=0.0, init=False)

    def __post_init__(self):
        self.recalculate()

    def recalculate(self):
        """Recompute the derived percentages from absolute usage."""
        self.cpu_pct = (self.cpu_usage_mhz / self.cpu_capacity_mhz * 100.0) if self.cpu_capacity_mhz > 0 else 0.0
        self.memory_pct = (self.memory_usage_gb / self.memory_capacity_gb * 100.0) if self.memory_capacity_gb > 0 else 0.0

    @property
    def is_active(self):
        return self.power_state == POWERED_ON and self.connection_state == CONNECTED

    @property
    def is_standby(self):
        return self.power_state in (STANDBY, POWERED_OFF) and self.connection_state == CONNECTED

    @property
    def spare_cpu_mhz(self):
        return self.cpu_capacity_mhz - self.cpu_usage_mhz

    @property
    def spare_memory_gb(self):
        return self.memory_capacity_gb - self.memory_usage_gb

    def projected_pct(self, cpu_delta_mhz, memory_delta_gb) -> Tuple[float, float]:
        cpu = ((self.cpu_usage_mhz + cpu_delta_mhz) / self.cpu_capacity_mhz * 100.0) if self.cpu_capacity_mhz > 0 else 100.0
        mem = ((self.memory_usage_gb + memory_delta_gb) / self.memory_capacity_gb * 100.0) if self.memory_capacity_gb > 0 else 100.0
        return cpu, mem

    def has_workload(self, workload_id):
        return any(w.id == workload_id for w in self.workloads)

    def add_workload(self, workload):
        self.workloads.append(workload)
        self.cpu_usage_mhz += workload.cpu_demand_mhz
        self.memory_usage_gb += workload.memory_demand_gb
        self.recalculate()

    def remove_workload(self, workload_id):
        for index, workload in enumerate(self.workloads):
            if workload.id == workload_id:
                del self.workloads[index]
                self.cpu_usage_mhz -= workload.cpu_demand_mhz
                self.memory_usage_gb -= workload.memory_demand_gb
                self.recalculate()
                return workload
        return None


@dataclass
class ClusterSnapshot:
    """
    Point-in-time view of a cluster. One planning invocation owns it;
    planners simulate moves on a copy() and never on the original.
    """
    cluster: Optional[str]
    hosts: List[HostSnapshot]
    captured_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    excluded: List[str] = field(default_factory=list)

    @property
    def active_hosts(self):
        return [h for h in self.hosts if h.is_active]

    @property
    def standby_hosts(self):
        return [h for h in self.hosts if h.is_standby]

    def copy(self):
        return copy.deepcopy(self)

    def get_host(self, host_id):
        for host in self.hosts:
            if host.id == host_id:
                return host
        return None

    def host_of_workload(self, workload_id):
        for host in self.hosts:
            if host.has_workload(workload_id):
                return host
        return None

    def find_workload(self, workload_id):
        for host in self.hosts:
            for workload in host.workloads:
                if workload.id == workload_id:
                    return workload
        return None

    def move_workload(self, workload_id, destination_host_id):
        """
        Relocate a workload inside this snapshot. Either both hosts are
        updated or, when the workload or destination is unknown, nothing is.
        Returns the relocated WorkloadRef or None.
        """
        source = self.host_of_workload(workload_id)
        destination = self.get_host(destination_host_id)
        if source is None or destination is None:
            logger.warning(f"[ClusterSnapshot] Cannot move '{workload_id}' to '{destination_host_id}': unknown workload or host.")
            return None
        if source.id == destination.id:
            return None
        workload = source.remove_workload(workload_id)
        moved = WorkloadRef(workload.id, destination.id, workload.cpu_demand_mhz, workload.memory_demand_gb)
        destination.add_workload(moved)
        return moved


@dataclass(frozen=True)
class AffinityRule:
    name: str
    kind: RuleKind
    members: Tuple[str, ...]
    enabled: bool = True
    scope: Optional[str] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class BalanceScore:
    cpu_std_dev: float
    memory_std_dev: float

    @property
    def score(self):
        return 0.5 * self.cpu_std_dev + 0.5 * self.memory_std_dev


@dataclass(frozen=True)
class ConstraintCheck:
    allowed: bool
    rule_name: Optional[str] = None

    @classmethod
    def allow(cls):
        return cls(True)

    @classmethod
    def violation(cls, rule_name):
        return cls(False, rule_name)

    def __bool__(self):
        return self.allowed


@dataclass(frozen=True)
class RuleViolation:
    rule_name: str
    kind: RuleKind
    workload_id: str
    host_id: str
    violation_type: str


@dataclass
class RelocationRecommendation:
    workload_id: str
    source_host: str
    destination_host: str
    resource: str
    improvement: float
    priority: Priority
    cpu_demand_mhz: float = 0.0
    memory_demand_gb: float = 0.0
    # Planning step that put the workload on its final host
    sequence: int = 0


@dataclass
class RelocationPlan:
    """
    Recommendations are listed by improvement. Executing them must follow
    execution_order(), the order in which they were simulated.
    """
    recommendations: List[RelocationRecommendation]
    score_before: Optional[BalanceScore]
    score_after: Optional[BalanceScore]
    iterations: int = 0
    stop_reason: str = 'balanced'
    cluster: Optional[str] = None

    @property
    def is_empty(self):
        return not self.recommendations

    def execution_order(self):
        return sorted(self.recommendations, key=lambda r: r.sequence)


@dataclass
class PlacementRecommendation:
    host_id: str
    score: float
    load_score: float
    balance_penalty: float
    projected_cpu_pct: float
    projected_memory_pct: float


@dataclass(frozen=True)
class Evacuation:
    workload_id: str
    destination_host: str


@dataclass
class PowerRecommendation:
    action: PowerAction
    host_id: str
    rationale: str
    average_utilization: float
    evacuations: List[Evacuation] = field(default_factory=list)
    # PowerOn only: the standby host must also leave maintenance mode
    host_in_maintenance: bool = False


@dataclass
class ExecutionResult:
    item_id: str
    action: str
    success: bool
    message: str = ''
    dry_run: bool = False


@dataclass
class PowerExecutionResult:
    host_id: str
    action: PowerAction
    success: bool
    steps: List[ExecutionResult] = field(default_factory=list)
    error: Optional[str] = None
