from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Tuple


class Vector(BaseModel):
    """A single (timestamp, value) sample of usage or cost"""
    timestamp: float
    value: float


class NodeData(BaseModel):
    """Unit prices of the node a workload ran on"""
    vcpu_cost: str = ""
    ram_cost: str = ""
    gpu_cost: str = ""
    storage_cost: str = ""
    usage_type: str = ""

    def is_spot(self) -> bool:
        return "spot" in self.usage_type or "emptible" in self.usage_type


class PersistentVolume(BaseModel):
    cost: str = ""
    size: str = ""


class PersistentVolumeClaimData(BaseModel):
    claim_name: str = ""
    volume: Optional[PersistentVolume] = None
    values: List[Vector] = Field(default_factory=list)


class CostData(BaseModel):
    """Raw usage time series for one workload"""
    name: str = ""
    pod_name: str = ""
    node_name: str = ""
    namespace: str = ""
    cluster_id: str = ""
    services: List[str] = Field(default_factory=list)
    deployments: List[str] = Field(default_factory=list)
    daemonsets: List[str] = Field(default_factory=list)
    labels: Dict[str, str] = Field(default_factory=dict)
    node_data: NodeData = Field(default_factory=NodeData)
    cpu_allocation: List[Vector] = Field(default_factory=list)
    cpu_req: List[Vector] = Field(default_factory=list)
    cpu_used: List[Vector] = Field(default_factory=list)
    ram_allocation: List[Vector] = Field(default_factory=list)
    ram_req: List[Vector] = Field(default_factory=list)
    ram_used: List[Vector] = Field(default_factory=list)
    gpu_req: List[Vector] = Field(default_factory=list)
    pvc_data: List[PersistentVolumeClaimData] = Field(default_factory=list)
    network_data: List[Vector] = Field(default_factory=list)


class CustomPricing(BaseModel):
    """Caller-supplied unit prices overriding the node prices"""
    enabled: bool = False
    cpu: str = ""
    ram: str = ""
    gpu: str = ""
    spot_cpu: str = ""
    spot_ram: str = ""
    spot_gpu: str = ""
    storage: str = ""

    def is_enabled(self) -> bool:
        return self.enabled


class SharedResourceInfo(BaseModel):
    """Namespaces and label selectors whose cost is split across all buckets"""
    share_resources: bool = False
    shared_namespaces: Dict[str, bool] = Field(default_factory=dict)
    label_selectors: Dict[str, str] = Field(default_factory=dict)

    def is_shared_resource(self, cost_datum: CostData) -> bool:
        if cost_datum.namespace in self.shared_namespaces:
            return True
        for label_name, label_value in self.label_selectors.items():
            if cost_datum.labels.get(label_name) == label_value:
                return True
        return False


def new_shared_resource_info(
    share_resources: bool,
    shared_namespaces: List[str],
    label_names: List[str],
    label_values: List[str],
) -> SharedResourceInfo:
    """
    Build a sharing policy. kube-system is always split across buckets.
    """
    if len(label_names) != len(label_values):
        raise ValueError(
            f"Shared label names and values differ in length ({len(label_names)} != {len(label_values)})"
        )
    namespaces = {ns: True for ns in shared_namespaces}
    namespaces["kube-system"] = True
    return SharedResourceInfo(
        share_resources=share_resources,
        shared_namespaces=namespaces,
        label_selectors=dict(zip(label_names, label_values)),
    )


class AggregationOptions(BaseModel):
    custom_pricing: Optional[CustomPricing] = None
    data_length: int = 0  # expected number of points per cost vector, 0 to infer
    discount: float = 0.0
    idle_coefficients: Dict[str, float] = Field(default_factory=dict)
    include_efficiency: bool = False
    include_time_series: bool = False
    rate: str = ""  # "", "hourly", "daily" or "monthly"
    shared_resource_info: Optional[SharedResourceInfo] = None


class Aggregation(BaseModel):
    """Accumulated cost report for one grouping key"""
    aggregator: str
    subfields: Optional[List[str]] = None
    environment: str
    cluster: Optional[str] = None

    cpu_allocation_vectors: List[Vector] = Field(default_factory=list, exclude=True)
    cpu_requested_vectors: List[Vector] = Field(default_factory=list, exclude=True)
    cpu_used_vectors: List[Vector] = Field(default_factory=list, exclude=True)
    ram_allocation_vectors: List[Vector] = Field(default_factory=list, exclude=True)
    ram_requested_vectors: List[Vector] = Field(default_factory=list, exclude=True)
    ram_used_vectors: List[Vector] = Field(default_factory=list, exclude=True)
    gpu_allocation: List[Vector] = Field(default_factory=list, exclude=True)

    cpu_cost: float = 0.0
    cpu_cost_vector: Optional[List[Vector]] = None
    ram_cost: float = 0.0
    ram_cost_vector: Optional[List[Vector]] = None
    gpu_cost: float = 0.0
    gpu_cost_vector: Optional[List[Vector]] = None
    pv_cost: float = 0.0
    pv_cost_vector: Optional[List[Vector]] = None
    network_cost: float = 0.0
    network_cost_vector: Optional[List[Vector]] = None
    shared_cost: float = 0.0
    total_cost: float = 0.0

    cpu_efficiency: Optional[float] = None
    ram_efficiency: Optional[float] = None
    efficiency: Optional[float] = None

    def get_data_length(self) -> int:
        vectors = [
            self.cpu_cost_vector,
            self.ram_cost_vector,
            self.pv_cost_vector,
            self.gpu_cost_vector,
            self.network_cost_vector,
        ]
        return max(len(v or []) for v in vectors)


class ClusterCostTotals(BaseModel):
    """Monthly cluster cost as returned by Prometheus, as [timestamp, "value"] pairs"""
    cpu_cost: List[Tuple[float, str]] = Field(default_factory=list)
    mem_cost: List[Tuple[float, str]] = Field(default_factory=list)
    storage_cost: List[Tuple[float, str]] = Field(default_factory=list)
