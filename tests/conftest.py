"""
Pytest fixtures for the cost model tests.

Provides:
- API test client
- Factory for workload cost data
"""

import pytest
from fastapi.testclient import TestClient

from costmodel.models import CostData, NodeData, Vector


def vectors(*samples):
    """Build a vector list from (timestamp, value) tuples."""
    return [Vector(timestamp=ts, value=value) for ts, value in samples]


@pytest.fixture
def make_cost_datum():
    """Factory building a CostData with hourly node prices and optional overrides."""
    def _make(namespace="default", pod_name="pod", cluster_id="cluster-one",
              cpu_price="0.5", ram_price="0.25", gpu_price="1.0", storage_price="0.04",
              usage_type="", **fields):
        node_data = NodeData(
            vcpu_cost=cpu_price,
            ram_cost=ram_price,
            gpu_cost=gpu_price,
            storage_cost=storage_price,
            usage_type=usage_type,
        )
        for name, value in list(fields.items()):
            if isinstance(value, list) and value and isinstance(value[0], tuple):
                fields[name] = vectors(*value)
        return CostData(
            name=pod_name,
            pod_name=pod_name,
            namespace=namespace,
            cluster_id=cluster_id,
            node_data=node_data,
            **fields,
        )
    return _make


@pytest.fixture
def client():
    """Test client for the FastAPI app."""
    from app import app
    return TestClient(app)
