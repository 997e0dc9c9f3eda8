import os
import logging
from typing import List, Optional, Tuple

from .models import CostData, CustomPricing, Vector
from .vectors import round_timestamp

logger = logging.getLogger(__name__)

HOURS_PER_DAY = 24.0
HOURS_PER_MONTH = 730.0
BYTES_PER_GIB = 1024 * 1024 * 1024

# Environment variables with default values
CUSTOM_PRICING_ENABLED = os.getenv("CUSTOM_PRICING_ENABLED", "false").lower() in ("1", "true", "yes")
CPU_HOURLY_COST = os.getenv("CPU_HOURLY_COST", "0.04")
MEMORY_GB_HOURLY_COST = os.getenv("MEMORY_GB_HOURLY_COST", "0.01")
GPU_HOURLY_COST = os.getenv("GPU_HOURLY_COST", "0.95")
SPOT_CPU_HOURLY_COST = os.getenv("SPOT_CPU_HOURLY_COST", "0.006655")
SPOT_MEMORY_GB_HOURLY_COST = os.getenv("SPOT_MEMORY_GB_HOURLY_COST", "0.000892")
SPOT_GPU_HOURLY_COST = os.getenv("SPOT_GPU_HOURLY_COST", "0.225")
STORAGE_GB_HOURLY_COST = os.getenv("STORAGE_GB_HOURLY_COST", "0.00005479452")

PriceVectors = Tuple[List[Vector], List[Vector], List[Vector], List[List[Vector]], List[Vector]]


def load_custom_pricing() -> CustomPricing:
    """
    Build the custom pricing configuration from the environment
    """
    return CustomPricing(
        enabled=CUSTOM_PRICING_ENABLED,
        cpu=CPU_HOURLY_COST,
        ram=MEMORY_GB_HOURLY_COST,
        gpu=GPU_HOURLY_COST,
        spot_cpu=SPOT_CPU_HOURLY_COST,
        spot_ram=SPOT_MEMORY_GB_HOURLY_COST,
        spot_gpu=SPOT_GPU_HOURLY_COST,
        storage=STORAGE_GB_HOURLY_COST,
    )


def parse_price(price: Optional[str]) -> float:
    """
    Parse a unit price. Malformed prices count as free rather than failing the report.
    """
    try:
        return float(price)
    except (TypeError, ValueError):
        logger.debug(f"Unparseable price {price!r}, using 0")
        return 0.0


def rate_coefficient(rate: str) -> float:
    """
    Unit prices are hourly; scale them to the requested rate. Any value other
    than "daily" or "monthly" (including "" and unknown rates) is hourly.
    """
    if rate == "daily":
        return HOURS_PER_DAY
    if rate == "monthly":
        return HOURS_PER_MONTH
    return 1.0


def get_price_vectors(
    cost_datum: CostData,
    rate: str,
    discount: float,
    idle_coefficient: float,
    custom_pricing: Optional[CustomPricing] = None,
) -> PriceVectors:
    """
    Convert a workload's usage series into cost series.

    Returns CPU, RAM and GPU cost vectors, one cost vector per attached volume
    and the network cost vector (already in cost units, returned as is).
    """
    node = cost_datum.node_data
    cpu_cost_str = node.vcpu_cost
    ram_cost_str = node.ram_cost
    gpu_cost_str = node.gpu_cost
    pv_cost_str = node.storage_cost

    if custom_pricing is not None and custom_pricing.is_enabled():
        if node.is_spot():
            cpu_cost_str = custom_pricing.spot_cpu
            ram_cost_str = custom_pricing.spot_ram
            gpu_cost_str = custom_pricing.spot_gpu
        else:
            cpu_cost_str = custom_pricing.cpu
            ram_cost_str = custom_pricing.ram
            gpu_cost_str = custom_pricing.gpu
        pv_cost_str = custom_pricing.storage

    cpu_cost = parse_price(cpu_cost_str)
    ram_cost = parse_price(ram_cost_str)
    gpu_cost = parse_price(gpu_cost_str)
    pv_cost = parse_price(pv_cost_str)

    rate_coeff = rate_coefficient(rate)
    undiscounted = 1 - discount

    cpuv = [
        Vector(
            timestamp=round_timestamp(v.timestamp),
            value=(v.value * cpu_cost * undiscounted / idle_coefficient) * rate_coeff,
        )
        for v in cost_datum.cpu_allocation
    ]

    ramv = [
        Vector(
            timestamp=round_timestamp(v.timestamp),
            value=((v.value / BYTES_PER_GIB) * ram_cost * undiscounted / idle_coefficient) * rate_coeff,
        )
        for v in cost_datum.ram_allocation
    ]

    gpuv = [
        Vector(
            timestamp=round_timestamp(v.timestamp),
            value=(v.value * gpu_cost * undiscounted / idle_coefficient) * rate_coeff,
        )
        for v in cost_datum.gpu_req
    ]

    pvvs = []
    for pvc in cost_datum.pvc_data:
        if pvc.volume is None:
            continue
        cost = parse_price(pvc.volume.cost)
        if custom_pricing is not None and custom_pricing.is_enabled():
            cost = pv_cost
        # storage is billed at list price, the discount only covers compute
        pvvs.append([
            Vector(
                timestamp=round_timestamp(v.timestamp),
                value=((v.value / BYTES_PER_GIB) * cost / idle_coefficient) * rate_coeff,
            )
            for v in pvc.values
        ])

    netv = [v.model_copy() for v in cost_datum.network_data]

    return cpuv, ramv, gpuv, pvvs, netv
