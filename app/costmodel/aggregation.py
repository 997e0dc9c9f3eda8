import math
import logging
from typing import Dict, List, Optional

from .models import Aggregation, AggregationOptions, CostData, CustomPricing
from .pricing import get_price_vectors
from .vectors import add_vectors, average_vectors, total_vectors
from .metrics import finops_aggregation_cost, finops_aggregation_efficiency, finops_shared_cost_pool

logger = logging.getLogger(__name__)

AGGREGATION_FIELDS = ("cluster", "namespace", "service", "deployment", "daemonset", "label", "pod")


def aggregation_key(cost_datum: CostData, field: str, subfields: List[str]) -> Optional[str]:
    """
    Return the bucket a workload belongs to for the given field, or None if the
    workload lacks the attribute the field groups by
    """
    if field == "cluster":
        return cost_datum.cluster_id
    if field == "namespace":
        return cost_datum.namespace
    if field == "service":
        if cost_datum.services:
            return f"{cost_datum.namespace}/{cost_datum.services[0]}"
        return None
    if field == "deployment":
        if cost_datum.deployments:
            return f"{cost_datum.namespace}/{cost_datum.deployments[0]}"
        return None
    if field == "daemonset":
        if cost_datum.daemonsets:
            return f"{cost_datum.namespace}/{cost_datum.daemonsets[0]}"
        return None
    if field == "label":
        for subfield in subfields:
            if subfield in cost_datum.labels:
                return cost_datum.labels[subfield]
        return None
    if field == "pod":
        return f"{cost_datum.namespace}/{cost_datum.pod_name}"
    return None


def aggregate_cost_data(
    cost_data: Dict[str, CostData],
    field: str,
    subfields: Optional[List[str]] = None,
    opts: Optional[AggregationOptions] = None,
) -> Dict[str, Aggregation]:
    """
    Aggregate raw cost data by field; e.g. namespace, cluster, service or label.
    Grouping by label requires subfields naming the labels to group by, the
    first label a workload carries wins.

    Workloads matched by the shared resource policy are not reported on their
    own; their cost is split evenly across every bucket instead.
    """
    opts = opts or AggregationOptions()
    subfields = subfields or []
    sr = opts.shared_resource_info

    aggregations: Dict[str, Aggregation] = {}

    # gauges describe the latest report only
    finops_aggregation_cost.clear()
    finops_aggregation_efficiency.clear()

    # running total of resources reported as shared rather than as a bucket
    shared_resource_cost = 0.0

    for cost_datum in cost_data.values():
        idle_coefficient = opts.idle_coefficients.get(cost_datum.cluster_id, 1.0)
        if not (idle_coefficient > 0 and math.isfinite(idle_coefficient)):
            logger.warning(
                f"Invalid idle coefficient {idle_coefficient} for cluster {cost_datum.cluster_id}, using 1.0"
            )
            idle_coefficient = 1.0

        if sr is not None and sr.share_resources and sr.is_shared_resource(cost_datum):
            cpuv, ramv, gpuv, pvvs, netv = get_price_vectors(
                cost_datum, opts.rate, opts.discount, idle_coefficient, opts.custom_pricing
            )
            shared_resource_cost += total_vectors(cpuv)
            shared_resource_cost += total_vectors(ramv)
            shared_resource_cost += total_vectors(gpuv)
            shared_resource_cost += total_vectors(netv)
            for pvv in pvvs:
                shared_resource_cost += total_vectors(pvv)
            continue

        key = aggregation_key(cost_datum, field, subfields)
        if key is None:
            continue
        aggregate_datum(
            aggregations, cost_datum, field, subfields, key,
            opts.rate, opts.discount, idle_coefficient, opts.custom_pricing
        )

    for agg in aggregations.values():
        finalize_aggregation(agg, shared_resource_cost / len(aggregations), opts)

    finops_shared_cost_pool.labels(aggregation=field).set(shared_resource_cost)
    logger.info(
        f"Aggregated {len(cost_data)} workloads by {field} into {len(aggregations)} buckets "
        f"(shared cost {shared_resource_cost:.4f})"
    )

    return aggregations


def aggregate_datum(
    aggregations: Dict[str, Aggregation],
    cost_datum: CostData,
    field: str,
    subfields: List[str],
    key: str,
    rate: str,
    discount: float,
    idle_coefficient: float,
    custom_pricing: Optional[CustomPricing],
) -> None:
    # add a new entry the first time a key is seen
    if key not in aggregations:
        aggregations[key] = Aggregation(
            aggregator=field,
            subfields=list(subfields) if subfields else None,
            environment=key,
            cluster=cost_datum.cluster_id or None,
        )
    agg = aggregations[key]
    if agg.cluster is not None and agg.cluster != cost_datum.cluster_id:
        # bucket spans clusters
        agg.cluster = None

    merge_vectors(cost_datum, agg, rate, discount, idle_coefficient, custom_pricing)


def merge_vectors(
    cost_datum: CostData,
    agg: Aggregation,
    rate: str,
    discount: float,
    idle_coefficient: float,
    custom_pricing: Optional[CustomPricing],
) -> None:
    agg.cpu_allocation_vectors = add_vectors(cost_datum.cpu_allocation, agg.cpu_allocation_vectors)
    agg.cpu_requested_vectors = add_vectors(cost_datum.cpu_req, agg.cpu_requested_vectors)
    agg.cpu_used_vectors = add_vectors(cost_datum.cpu_used, agg.cpu_used_vectors)

    agg.ram_allocation_vectors = add_vectors(cost_datum.ram_allocation, agg.ram_allocation_vectors)
    agg.ram_requested_vectors = add_vectors(cost_datum.ram_req, agg.ram_requested_vectors)
    agg.ram_used_vectors = add_vectors(cost_datum.ram_used, agg.ram_used_vectors)

    agg.gpu_allocation = add_vectors(cost_datum.gpu_req, agg.gpu_allocation)

    cpuv, ramv, gpuv, pvvs, netv = get_price_vectors(cost_datum, rate, discount, idle_coefficient, custom_pricing)
    agg.cpu_cost_vector = add_vectors(cpuv, agg.cpu_cost_vector)
    agg.ram_cost_vector = add_vectors(ramv, agg.ram_cost_vector)
    agg.gpu_cost_vector = add_vectors(gpuv, agg.gpu_cost_vector)
    agg.network_cost_vector = add_vectors(netv, agg.network_cost_vector)
    for pvv in pvvs:
        agg.pv_cost_vector = add_vectors(agg.pv_cost_vector, pvv)


def finalize_aggregation(agg: Aggregation, shared_cost: float, opts: AggregationOptions) -> None:
    """
    Turn a bucket's accumulated vectors into scalar costs and efficiency scores
    """
    agg.cpu_cost = total_vectors(agg.cpu_cost_vector)
    agg.ram_cost = total_vectors(agg.ram_cost_vector)
    agg.gpu_cost = total_vectors(agg.gpu_cost_vector)
    agg.pv_cost = total_vectors(agg.pv_cost_vector)
    agg.network_cost = total_vectors(agg.network_cost_vector)
    agg.shared_cost = shared_cost

    # convert cumulative cost into cost per rate period
    data_length = opts.data_length or agg.get_data_length()
    if opts.rate != "" and data_length > 0:
        agg.cpu_cost /= data_length
        agg.ram_cost /= data_length
        agg.gpu_cost /= data_length
        agg.pv_cost /= data_length
        agg.network_cost /= data_length
        agg.shared_cost /= data_length

    agg.total_cost = agg.cpu_cost + agg.ram_cost + agg.gpu_cost + agg.pv_cost + agg.network_cost + agg.shared_cost

    if opts.include_efficiency:
        compute_efficiency(agg)

    finops_aggregation_cost.labels(aggregation=agg.aggregator, environment=agg.environment, resource_type="cpu").set(agg.cpu_cost)
    finops_aggregation_cost.labels(aggregation=agg.aggregator, environment=agg.environment, resource_type="memory").set(agg.ram_cost)
    finops_aggregation_cost.labels(aggregation=agg.aggregator, environment=agg.environment, resource_type="gpu").set(agg.gpu_cost)
    finops_aggregation_cost.labels(aggregation=agg.aggregator, environment=agg.environment, resource_type="storage").set(agg.pv_cost)
    finops_aggregation_cost.labels(aggregation=agg.aggregator, environment=agg.environment, resource_type="network").set(agg.network_cost)
    finops_aggregation_cost.labels(aggregation=agg.aggregator, environment=agg.environment, resource_type="shared").set(agg.shared_cost)
    finops_aggregation_cost.labels(aggregation=agg.aggregator, environment=agg.environment, resource_type="total").set(agg.total_cost)

    # drop time series data unless explicitly requested
    if not opts.include_time_series:
        agg.cpu_cost_vector = None
        agg.ram_cost_vector = None
        agg.gpu_cost_vector = None
        agg.pv_cost_vector = None
        agg.network_cost_vector = None
        agg.cpu_allocation_vectors = []
        agg.cpu_requested_vectors = []
        agg.cpu_used_vectors = []
        agg.ram_allocation_vectors = []
        agg.ram_requested_vectors = []
        agg.ram_used_vectors = []
        agg.gpu_allocation = []


def idle_fraction(allocation, requested, used) -> Optional[float]:
    """
    Fraction of the average allocation that was requested but not used, or
    None when nothing was allocated
    """
    avg_allocation = average_vectors(allocation)
    if avg_allocation <= 0.0:
        return None
    return (average_vectors(requested) - average_vectors(used)) / avg_allocation


def compute_efficiency(agg: Aggregation) -> None:
    """
    Score CPU, RAM and overall efficiency of a bucket.

    Efficiency is 1 - (requested - used) / allocated. With nothing allocated it
    defaults to 1.0, and scores above 1.0 are possible; both should be read as
    red flags rather than as perfect utilization. Scores below 0 (requests far
    above allocation) are reported as computed and logged.
    """
    cpu_idle = idle_fraction(agg.cpu_allocation_vectors, agg.cpu_requested_vectors, agg.cpu_used_vectors)
    agg.cpu_efficiency = 1.0 if cpu_idle is None else 1.0 - cpu_idle

    ram_idle = idle_fraction(agg.ram_allocation_vectors, agg.ram_requested_vectors, agg.ram_used_vectors)
    agg.ram_efficiency = 1.0 if ram_idle is None else 1.0 - ram_idle

    # overall efficiency weights CPU and RAM idleness by their cost
    agg.efficiency = 1.0
    if (agg.cpu_cost + agg.ram_cost) > 0:
        agg.efficiency = 1.0 - (
            (agg.cpu_cost * (cpu_idle or 0.0)) + (agg.ram_cost * (ram_idle or 0.0))
        ) / (agg.cpu_cost + agg.ram_cost)

    for resource_type, value in (("cpu", agg.cpu_efficiency), ("memory", agg.ram_efficiency), ("overall", agg.efficiency)):
        if value < 0:
            logger.warning(f"Negative {resource_type} efficiency {value:.4f} for {agg.aggregator} {agg.environment}")
        finops_aggregation_efficiency.labels(
            aggregation=agg.aggregator, environment=agg.environment, resource_type=resource_type
        ).set(value)
