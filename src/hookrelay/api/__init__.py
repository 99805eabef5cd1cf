"""
API endpoints package.

Contains FastAPI routers for all service endpoints:
- /webhook/{secret_id} - Webhook relay
- /admin/cache/purge/{secret_id}, /api/clients/by-secret/{secret_id} - Admin and lookup
- /metrics - Prometheus metrics
- /healthz, /readyz - Health checks
"""
from .admin import router as admin_router
from .healthz import router as healthz_router
from .metrics import router as metrics_router
from .webhook import router as webhook_router

__all__ = ["admin_router", "healthz_router", "metrics_router", "webhook_router"]
