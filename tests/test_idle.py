"""
Unit tests for the idle coefficient estimator.

Tests:
- Window parsing
- Coefficients against prorated cluster bills
- Missing and malformed billing data
"""

import pytest

from costmodel.idle import compute_idle_coefficient, parse_window_hours
from costmodel.models import ClusterCostTotals, PersistentVolume, PersistentVolumeClaimData
from conftest import vectors

GIB = 1024 * 1024 * 1024


def billing(**clusters):
    """Fake billing collaborator returning fixed monthly totals per cluster."""
    calls = []

    def cluster_costs(window, offset):
        calls.append((window, offset))
        return {
            cluster_id: ClusterCostTotals(
                cpu_cost=[(0, cpu)] if cpu is not None else [],
                mem_cost=[(0, mem)] if mem is not None else [],
                storage_cost=[(0, storage)] if storage is not None else [],
            )
            for cluster_id, (cpu, mem, storage) in clusters.items()
        }

    cluster_costs.calls = calls
    return cluster_costs


class TestParseWindowHours:
    """Tests for duration parsing."""

    @pytest.mark.parametrize("window,hours", [
        ("24h", 24.0),
        ("90m", 1.5),
        ("7d", 168.0),
        ("1h30m", 1.5),
        ("3600s", 1.0),
        ("730h", 730.0),
    ])
    def test_valid_windows(self, window, hours):
        assert parse_window_hours(window) == pytest.approx(hours)

    @pytest.mark.parametrize("window", ["", "24", "abc", "1w", "h24"])
    def test_invalid_windows(self, window):
        with pytest.raises(ValueError, match="Invalid window"):
            parse_window_hours(window)


class TestComputeIdleCoefficient:
    """Tests for per-cluster idle coefficients."""

    def test_half_of_bill_explained(self, make_cost_datum):
        """Workloads costing 50 against a prorated bill of 100 give 0.5."""
        cost_data = {"a": make_cost_datum(cpu_allocation=[(100, 100)])}
        cluster_costs = billing(**{"cluster-one": ("100", "0", "0")})

        result = compute_idle_coefficient(cost_data, None, 0.0, "730h", cluster_costs=cluster_costs)

        assert result == {"cluster-one": pytest.approx(0.5)}
        assert cluster_costs.calls == [("730h", "")]

    def test_prorates_monthly_bill_to_window(self, make_cost_datum):
        # 730 per month is 24 per day
        cost_data = {"a": make_cost_datum(cpu_allocation=[(100, 12)])}

        result = compute_idle_coefficient(
            cost_data, None, 0.0, "24h", cluster_costs=billing(**{"cluster-one": ("730", "0", "0")})
        )

        assert result["cluster-one"] == pytest.approx(0.25)

    def test_discount_applies_to_compute_only(self, make_cost_datum):
        # bill: 100 * 0.5 + 100 * 0.5 + 50 = 150; workloads: 40 * 0.5 * 0.5 + 20 GiB * 0.5 = 20
        cost_data = {"a": make_cost_datum(
            cpu_allocation=[(100, 40)],
            pvc_data=[PersistentVolumeClaimData(volume=PersistentVolume(cost="0.5"), values=vectors((100, 20 * GIB)))],
        )}

        result = compute_idle_coefficient(
            cost_data, None, 0.5, "730h", cluster_costs=billing(**{"cluster-one": ("100", "100", "50")})
        )

        assert result["cluster-one"] == pytest.approx(20 / 150)

    def test_network_cost_not_counted(self, make_cost_datum):
        cost_data = {"a": make_cost_datum(cpu_allocation=[(100, 100)], network_data=[(100, 50.0)])}

        result = compute_idle_coefficient(
            cost_data, None, 0.0, "730h", cluster_costs=billing(**{"cluster-one": ("100", "0", "0")})
        )

        assert result["cluster-one"] == pytest.approx(0.5)

    def test_only_cluster_workloads_counted(self, make_cost_datum):
        cost_data = {
            "a": make_cost_datum(cluster_id="east", cpu_allocation=[(100, 100)]),
            "b": make_cost_datum(cluster_id="west", cpu_allocation=[(100, 40)]),
        }

        result = compute_idle_coefficient(
            cost_data, None, 0.0, "730h",
            cluster_costs=billing(east=("100", "0", "0"), west=("40", "0", "0")),
        )

        assert result["east"] == pytest.approx(0.5)
        assert result["west"] == pytest.approx(0.5)

    def test_cluster_without_billing_data(self, make_cost_datum):
        cost_data = {
            "a": make_cost_datum(cluster_id="east", cpu_allocation=[(100, 100)]),
            "b": make_cost_datum(cluster_id="west", cpu_allocation=[(100, 100)]),
        }

        result = compute_idle_coefficient(
            cost_data, None, 0.0, "730h", cluster_costs=billing(west=("100", None, "0"))
        )

        assert result == {"east": 1.0, "west": 1.0}

    def test_zero_bill_gives_no_correction(self, make_cost_datum):
        cost_data = {"a": make_cost_datum(cpu_allocation=[(100, 100)])}

        result = compute_idle_coefficient(
            cost_data, None, 0.0, "730h", cluster_costs=billing(**{"cluster-one": ("0", "0", "0")})
        )

        assert result == {"cluster-one": 1.0}

    @pytest.mark.parametrize("value", ["NaN", "+Inf", "-Inf"])
    def test_non_finite_billing_value_aborts(self, make_cost_datum, value):
        cost_data = {"a": make_cost_datum(cpu_allocation=[(100, 100)])}

        with pytest.raises(ValueError, match="Malformed cpu cost"):
            compute_idle_coefficient(
                cost_data, None, 0.0, "730h", cluster_costs=billing(**{"cluster-one": (value, "0", "0")})
            )

    def test_malformed_billing_value_aborts(self, make_cost_datum):
        cost_data = {
            "a": make_cost_datum(cluster_id="east", cpu_allocation=[(100, 100)]),
            "b": make_cost_datum(cluster_id="west", cpu_allocation=[(100, 100)]),
        }

        with pytest.raises(ValueError, match="Malformed memory cost"):
            compute_idle_coefficient(
                cost_data, None, 0.0, "730h",
                cluster_costs=billing(east=("100", "0", "0"), west=("100", "NaN?", "0")),
            )

    def test_invalid_window_fails_before_billing_query(self, make_cost_datum):
        cluster_costs = billing()

        with pytest.raises(ValueError):
            compute_idle_coefficient({"a": make_cost_datum()}, None, 0.0, "soon", cluster_costs=cluster_costs)

        assert cluster_costs.calls == []

    def test_offset_forwarded(self, make_cost_datum):
        cluster_costs = billing()

        compute_idle_coefficient({"a": make_cost_datum()}, None, 0.0, "1h", "1d", cluster_costs=cluster_costs)

        assert cluster_costs.calls == [("1h", "1d")]
