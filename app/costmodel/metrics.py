from prometheus_client import Gauge, Counter

# Basic API metrics
finops_http_requests_total = Counter(
    'finops_http_requests_total',
    'Total number of HTTP requests to FinOps API',
    ['method', 'endpoint', 'status']
)

# Cost model metrics
finops_aggregation_cost = Gauge(
    'finops_aggregation_cost',
    'Cost of the last aggregation per bucket and resource ($, cumulative or per rate period)',
    ['aggregation', 'environment', 'resource_type']
)

finops_aggregation_efficiency = Gauge(
    'finops_aggregation_efficiency',
    'Efficiency of the last aggregation per bucket (1.0 is fully used, >1 or 1.0 with no allocation is a red flag)',
    ['aggregation', 'environment', 'resource_type']
)

finops_idle_coefficient = Gauge(
    'finops_idle_coefficient',
    'Ratio of monitored workload cost to the cluster bill over the window',
    ['cluster_id']
)

finops_shared_cost_pool = Gauge(
    'finops_shared_cost_pool',
    'Cost of shared resources split across all buckets in the last aggregation ($)',
    ['aggregation']
)
