import re
import math
import logging
from typing import Callable, Dict, List, Optional, Tuple

from .models import ClusterCostTotals, CostData, CustomPricing
from .pricing import HOURS_PER_MONTH, get_price_vectors
from .prometheus import cluster_costs_for_all_clusters
from .vectors import total_vectors
from .metrics import finops_idle_coefficient

logger = logging.getLogger(__name__)

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h|d)")
_UNIT_HOURS = {"ms": 1 / 3600000, "s": 1 / 3600, "m": 1 / 60, "h": 1.0, "d": 24.0}

ClusterCostsFn = Callable[[str, str], Dict[str, ClusterCostTotals]]


def parse_window_hours(window: str) -> float:
    """
    Convert a duration such as "24h", "90m", "7d" or "1h30m" to hours
    """
    if not window or _DURATION_PART.sub("", window) != "":
        raise ValueError(f"Invalid window {window!r}")
    return sum(float(amount) * _UNIT_HOURS[unit] for amount, unit in _DURATION_PART.findall(window))


def _parse_billed_cost(samples: List[Tuple[float, str]], cluster_id: str, resource: str) -> float:
    raw = samples[0][1]
    try:
        cost = float(raw)
    except ValueError as e:
        logger.error(f"Malformed {resource} cost {raw!r} for cluster {cluster_id}")
        raise ValueError(f"Malformed {resource} cost for cluster {cluster_id}: {raw!r}") from e
    # Prometheus reports NaN for empty divisions
    if not math.isfinite(cost):
        logger.error(f"Non-finite {resource} cost {raw!r} for cluster {cluster_id}")
        raise ValueError(f"Malformed {resource} cost for cluster {cluster_id}: {raw!r}")
    return cost


def compute_idle_coefficient(
    cost_data: Dict[str, CostData],
    custom_pricing: Optional[CustomPricing],
    discount: float,
    window: str,
    offset: str = "",
    cluster_costs: ClusterCostsFn = cluster_costs_for_all_clusters,
) -> Dict[str, float]:
    """
    Compute, per cluster, the share of the cluster bill explained by its
    monitored workloads over the window.

    Clusters without billing data get 1.0 (no correction). A malformed billing
    value fails the whole computation.
    """
    window_hours = parse_window_hours(window)
    all_totals = cluster_costs(window, offset)

    cluster_ids = sorted({cost_datum.cluster_id for cost_datum in cost_data.values()})
    coefficients = {}

    for cluster_id in cluster_ids:
        totals = all_totals.get(cluster_id)
        if totals is None or not (totals.cpu_cost and totals.mem_cost and totals.storage_cost):
            logger.warning(f"No billing data for cluster {cluster_id}. Is it emitting data?")
            coefficients[cluster_id] = 1.0
            continue

        cpu_cost = _parse_billed_cost(totals.cpu_cost, cluster_id, "cpu")
        mem_cost = _parse_billed_cost(totals.mem_cost, cluster_id, "memory")
        storage_cost = _parse_billed_cost(totals.storage_cost, cluster_id, "storage")

        # storage is never discounted
        total_cluster_cost = (cpu_cost * (1 - discount)) + (mem_cost * (1 - discount)) + storage_cost
        total_cluster_cost_over_window = (total_cluster_cost / HOURS_PER_MONTH) * window_hours
        if total_cluster_cost_over_window <= 0:
            logger.warning(f"Cluster {cluster_id} billed {total_cluster_cost} over {window}, skipping idle correction")
            coefficients[cluster_id] = 1.0
            continue

        total_container_cost = 0.0
        for cost_datum in cost_data.values():
            if cost_datum.cluster_id != cluster_id:
                continue
            cpuv, ramv, gpuv, pvvs, _ = get_price_vectors(cost_datum, "", discount, 1, custom_pricing)
            total_container_cost += total_vectors(cpuv)
            total_container_cost += total_vectors(ramv)
            total_container_cost += total_vectors(gpuv)
            for pvv in pvvs:
                total_container_cost += total_vectors(pvv)

        coefficients[cluster_id] = total_container_cost / total_cluster_cost_over_window
        logger.info(
            f"{cluster_id}: workloads cost {total_container_cost:.4f} of {total_cluster_cost_over_window:.4f} "
            f"billed, idle coefficient {coefficients[cluster_id]:.4f}"
        )
        finops_idle_coefficient.labels(cluster_id=cluster_id).set(coefficients[cluster_id])

    return coefficients
