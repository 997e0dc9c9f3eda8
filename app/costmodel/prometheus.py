import logging
import os
from typing import Dict, Any, List
from fastapi import HTTPException
from prometheus_api_client import PrometheusConnect
import requests

from .models import ClusterCostTotals

logger = logging.getLogger(__name__)

# Environment variables with default values
PROMETHEUS_URL = os.getenv("PROMETHEUS_URL", "http://prometheus-kube-prometheus-prometheus.monitoring.svc.cluster.local:9090")
CLUSTER_ID = os.getenv("CLUSTER_ID", "cluster-one")

# Monthly cost of each cluster, averaged over the window
CLUSTER_CPU_COST_QUERY = """
sum(
  avg(avg_over_time(node_cpu_hourly_cost[{window}]{offset})) by (node, cluster_id) * 730
  * avg(avg_over_time(kube_node_status_capacity_cpu_cores[{window}]{offset})) by (node, cluster_id)
) by (cluster_id)
"""

CLUSTER_MEMORY_COST_QUERY = """
sum(
  avg(avg_over_time(node_ram_hourly_cost[{window}]{offset})) by (node, cluster_id) * 730
  * avg(avg_over_time(kube_node_status_capacity_memory_bytes[{window}]{offset})) by (node, cluster_id) / 1024 / 1024 / 1024
) by (cluster_id)
"""

CLUSTER_STORAGE_COST_QUERY = """
sum(
  avg(avg_over_time(pv_hourly_cost[{window}]{offset})) by (persistentvolume, cluster_id) * 730
  * avg(avg_over_time(kube_persistentvolume_capacity_bytes[{window}]{offset})) by (persistentvolume, cluster_id) / 1024 / 1024 / 1024
) by (cluster_id)
"""

# Global Prometheus client
prom_client = None

def get_prometheus_client():
    """
    Get or initialize the Prometheus client
    """
    global prom_client
    if prom_client is None:
        try:
            prom_client = PrometheusConnect(url=PROMETHEUS_URL, disable_ssl=True, headers={"Connection": "close"})
            prom_client.check_prometheus_connection()
            logger.info(f"Successfully connected to Prometheus at {PROMETHEUS_URL}")
        except Exception as e:
            logger.error(f"Failed to initialize Prometheus client: {e}")
            prom_client = FallbackPrometheusClient(PROMETHEUS_URL)
    return prom_client

class FallbackPrometheusClient:
    """
    Plain HTTP client used if the PrometheusConnect client fails to initialize
    """
    def __init__(self, url):
        self.url = url
        logger.info(f"Using fallback Prometheus client for {url}")

    def custom_query(self, query):
        response = requests.get(f"{self.url}/api/v1/query", params={"query": query})
        response.raise_for_status()
        data = response.json()
        if 'data' in data and 'result' in data['data']:
            return data['data']['result']
        return []

def query_prometheus(query: str) -> Dict[str, Any]:
    """
    Execute a PromQL query against the Prometheus API using the client library
    """
    try:
        client = get_prometheus_client()
        result = client.custom_query(query=query)
        return {"data": {"result": result}}
    except Exception as e:
        logger.error(f"Unexpected error querying Prometheus: {e}")
        raise HTTPException(status_code=502, detail=f"Prometheus query failed: {str(e)}")

def extract_cluster_results(prometheus_response: Dict[str, Any]) -> Dict[str, List[List[Any]]]:
    """
    Extract cluster-specific [timestamp, value] samples from a Prometheus response.
    Values are kept as the strings Prometheus returns.
    """
    results = {}

    if prometheus_response and 'data' in prometheus_response and 'result' in prometheus_response['data']:
        for item in prometheus_response['data']['result']:
            if 'value' not in item:
                continue
            cluster_id = item.get('metric', {}).get('cluster_id') or CLUSTER_ID
            results.setdefault(cluster_id, []).append(item['value'])

    return results

def cluster_costs_for_all_clusters(window: str, offset: str = "") -> Dict[str, ClusterCostTotals]:
    """
    Query the monthly CPU, memory and storage cost of every cluster reporting to Prometheus
    """
    offset_clause = f" offset {offset}" if offset else ""

    cpu_costs = extract_cluster_results(query_prometheus(
        CLUSTER_CPU_COST_QUERY.format(window=window, offset=offset_clause)
    ))
    memory_costs = extract_cluster_results(query_prometheus(
        CLUSTER_MEMORY_COST_QUERY.format(window=window, offset=offset_clause)
    ))
    storage_costs = extract_cluster_results(query_prometheus(
        CLUSTER_STORAGE_COST_QUERY.format(window=window, offset=offset_clause)
    ))

    totals = {}
    for cluster_id in set(cpu_costs) | set(memory_costs) | set(storage_costs):
        totals[cluster_id] = ClusterCostTotals(
            cpu_cost=[(float(ts), str(value)) for ts, value in cpu_costs.get(cluster_id, [])],
            mem_cost=[(float(ts), str(value)) for ts, value in memory_costs.get(cluster_id, [])],
            storage_cost=[(float(ts), str(value)) for ts, value in storage_costs.get(cluster_id, [])],
        )

    logger.info(f"Retrieved cluster costs for {len(totals)} clusters over {window}")
    return totals
