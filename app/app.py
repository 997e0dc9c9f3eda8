import os
import logging
from fastapi import FastAPI, HTTPException
import uvicorn
from typing import Dict, List, Optional
from datetime import datetime
from pydantic import BaseModel, Field
from prometheus_fastapi_instrumentator import Instrumentator
from costmodel.metrics import finops_http_requests_total

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Environment variables with default values
SHARED_NAMESPACES = [ns for ns in os.getenv("SHARED_NAMESPACES", "").split(",") if ns]
SHARED_LABEL_NAMES = [name for name in os.getenv("SHARED_LABEL_NAMES", "").split(",") if name]
SHARED_LABEL_VALUES = [value for value in os.getenv("SHARED_LABEL_VALUES", "").split(",") if value]

# Create the FastAPI app
app = FastAPI(title="FinOps Cost Model API", description="Aggregated Kubernetes workload cost reports")

# Initialize and apply instrumentation BEFORE defining routes
instrumentator = Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=True,
    should_instrument_requests_inprogress=True,
    excluded_handlers=["/metrics"],
    inprogress_name="finops_api_inprogress",
    inprogress_labels=True,
)
instrumentator.instrument(app).expose(app)
logger.info("Application instrumented with Prometheus metrics at /metrics")

# Import our modules (AFTER instrumenting the app)
from costmodel.models import Aggregation, AggregationOptions, CostData, new_shared_resource_info
from costmodel.aggregation import AGGREGATION_FIELDS, aggregate_cost_data
from costmodel.idle import compute_idle_coefficient, parse_window_hours
from costmodel.pricing import load_custom_pricing


class IdleCoefficientRequest(BaseModel):
    """Workloads and window to compute idle coefficients for"""
    cost_data: Dict[str, CostData]
    window: str = "24h"
    offset: str = ""
    discount: float = Field(default=0.0, ge=0.0, lt=1.0)
    custom_pricing: Optional[bool] = None


class AggregationRequest(BaseModel):
    """Workloads to aggregate and how to group and price them"""
    cost_data: Dict[str, CostData]
    field: str = "namespace"
    subfields: List[str] = Field(default_factory=list)
    rate: str = ""
    discount: float = Field(default=0.0, ge=0.0, lt=1.0)
    data_length: int = Field(default=0, ge=0)
    include_efficiency: bool = True
    include_time_series: bool = False
    custom_pricing: Optional[bool] = None
    share_resources: bool = False
    shared_namespaces: Optional[List[str]] = None
    shared_label_names: Optional[List[str]] = None
    shared_label_values: Optional[List[str]] = None
    idle_coefficients: Dict[str, float] = Field(default_factory=dict)
    compute_idle: bool = False
    window: str = "24h"
    offset: str = ""


# Health check endpoint
@app.get("/health")
def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "timestamp": datetime.now().isoformat()}

# API version
@app.get("/version")
def version():
    """Return API version information"""
    return {"version": "0.3.0", "api": "FinOps K8s Cost Model"}

# Error handling wrapper for cost model functions
def handle_errors(func, *args, **kwargs):
    """Wrapper to catch and log errors in cost model functions"""
    try:
        return func(*args, **kwargs)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error in {func.__name__}: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Error processing request: {str(e)}")

def idle_coefficients_for(request, custom_pricing):
    """Compute idle coefficients, reporting unusable cluster billing as an upstream failure"""
    try:
        return compute_idle_coefficient(
            request.cost_data, custom_pricing, request.discount, request.window, request.offset
        )
    except HTTPException:
        raise
    except ValueError as e:
        logger.error(f"Error in compute_idle_coefficient: {str(e)}")
        raise HTTPException(status_code=502, detail=f"Invalid billing data: {str(e)}")
    except Exception as e:
        logger.error(f"Error in compute_idle_coefficient: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Error processing request: {str(e)}")

def resolve_custom_pricing(enabled: Optional[bool]):
    """Custom pricing from the environment, switched on or off by the request if it says so"""
    custom_pricing = load_custom_pricing()
    if enabled is not None:
        custom_pricing.enabled = enabled
    return custom_pricing

def validate_window(window: str):
    """Reject windows that are not durations such as 24h or 7d"""
    try:
        parse_window_hours(window)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

# Endpoint to compute idle coefficients by cluster
@app.post("/idle-coefficients", response_model=Dict[str, float])
def get_idle_coefficients(request: IdleCoefficientRequest):
    """Get the idle coefficient of every cluster in the cost data"""
    validate_window(request.window)
    custom_pricing = resolve_custom_pricing(request.custom_pricing)
    return idle_coefficients_for(request, custom_pricing)

# Endpoint to get aggregated costs
@app.post("/aggregated-costs", response_model=Dict[str, Aggregation], response_model_exclude_none=True)
def get_aggregated_costs(request: AggregationRequest):
    """Get costs of the given workloads aggregated by field"""
    if request.field not in AGGREGATION_FIELDS:
        raise HTTPException(status_code=400, detail=f"Unsupported aggregation field: {request.field}")
    if request.field == "label" and not request.subfields:
        raise HTTPException(status_code=400, detail="Aggregating by label requires subfields")

    custom_pricing = resolve_custom_pricing(request.custom_pricing)

    label_names = request.shared_label_names if request.shared_label_names is not None else SHARED_LABEL_NAMES
    label_values = request.shared_label_values if request.shared_label_values is not None else SHARED_LABEL_VALUES
    if len(label_names) != len(label_values):
        raise HTTPException(status_code=400, detail="Shared label names and values must have the same length")
    shared_resource_info = new_shared_resource_info(
        request.share_resources,
        request.shared_namespaces if request.shared_namespaces is not None else SHARED_NAMESPACES,
        label_names,
        label_values,
    )

    idle_coefficients = dict(request.idle_coefficients)
    if request.compute_idle:
        validate_window(request.window)
        idle_coefficients = idle_coefficients_for(request, custom_pricing)

    opts = AggregationOptions(
        custom_pricing=custom_pricing,
        data_length=request.data_length,
        discount=request.discount,
        idle_coefficients=idle_coefficients,
        include_efficiency=request.include_efficiency,
        include_time_series=request.include_time_series,
        rate=request.rate,
        shared_resource_info=shared_resource_info,
    )
    aggregations = handle_errors(aggregate_cost_data, request.cost_data, request.field, request.subfields, opts)
    return {key: aggregations[key] for key in sorted(aggregations)}

@app.middleware("http")
async def metrics_middleware(request, call_next):
    response = await call_next(request)

    # Update request metrics
    finops_http_requests_total.labels(
        method=request.method,
        endpoint=request.url.path,
        status=response.status_code
    ).inc()

    return response


if __name__ == "__main__":
    uvicorn.run("app:app", host="0.0.0.0", port=8000, log_level="info")
