"""Tenant middleware for FastAPI."""

import logging
import math
from collections.abc import Mapping
from typing import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from tenancy_core.config import get_settings
from tenancy_core.exceptions import RateLimitedError, TenancyError
from tenancy_core.tenancy.context import reset_tenant_context, set_tenant_context
from tenancy_core.tenancy.models import RateLimitOperation, TenantContext
from tenancy_core.tenancy.rate_limiter import TenantRateLimiter
from tenancy_core.tenancy.resolver import TenantResolver

logger = logging.getLogger(__name__)

# Path prefix -> operation; anything unmatched counts as a query
DEFAULT_OPERATION_ROUTES: dict[str, RateLimitOperation] = {
    "/ingest": RateLimitOperation.INGEST,
    "/documents": RateLimitOperation.INGEST,
    "/ws": RateLimitOperation.WEBSOCKET,
    "/embed": RateLimitOperation.BATCH_EMBED,
    "/retrieve": RateLimitOperation.RETRIEVE,
}


class TenantMiddleware(BaseHTTPMiddleware):
    """
    Middleware for multi-tenant isolation.

    Responsibilities:
    1. Extract the credential (Authorization header, or X-API-Key)
    2. Resolve the tenant through TenantResolver
    3. Set tenant context for the request
    4. Apply rate limiting for the operation the path maps to
    5. Add tenant and rate limit headers to the response

    A request is charged against its bucket only when the response status is
    below 400. The pre-handler check consumes nothing, so concurrent requests
    that all pass it before any of them is charged can together exceed the
    bucket capacity by up to the number of requests in flight. Tenancy errors
    are rendered as JSON using their status code.
    """

    def __init__(
        self,
        app: Callable,
        resolver: TenantResolver,
        rate_limiter: TenantRateLimiter | None = None,
        exclude_paths: list[str] | None = None,
        operation_routes: Mapping[str, RateLimitOperation] | None = None,
    ) -> None:
        """
        Initialize the middleware.

        Args:
            app: The FastAPI application.
            resolver: Resolves credentials to tenants.
            rate_limiter: Optional TenantRateLimiter for rate limiting.
            exclude_paths: Paths to exclude from authentication (defaults to settings).
            operation_routes: Path prefix to operation mapping for rate limiting.
        """
        super().__init__(app)
        self.resolver = resolver
        self.rate_limiter = rate_limiter
        self.exclude_paths = (
            exclude_paths if exclude_paths is not None else get_settings().tenant_exclude_paths
        )
        self.operation_routes = dict(
            operation_routes if operation_routes is not None else DEFAULT_OPERATION_ROUTES
        )

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Process the request with tenant context."""
        if self._should_exclude(request.url.path):
            return await call_next(request)

        token = None
        try:
            tenant = await self.resolver.resolve(self._get_credential(request))
            token = set_tenant_context(tenant)

            operation = self.operation_for(request.url.path)
            if self.rate_limiter:
                try:
                    await self.rate_limiter.check_limit(tenant.tenant_id, operation)
                except RateLimitedError as e:
                    return await self._rate_limited_response(e, tenant, operation)

            response = await call_next(request)

            if self.rate_limiter:
                if response.status_code < 400:
                    await self.rate_limiter.record_usage(tenant.tenant_id, operation)
                await self._add_rate_limit_headers(response, tenant, operation)

            response.headers["X-Tenant-Id"] = tenant.tenant_id
            response.headers["X-Tenant-Tier"] = tenant.tier.value
            return response

        except TenancyError as e:
            if e.status_code >= 500:
                logger.error("Tenant middleware error: %s", e)
            return self._error_response(e)
        except Exception as e:
            logger.exception(f"Error in tenant middleware: {e}")
            return JSONResponse(
                content={"error": "INTERNAL_ERROR", "detail": "Internal server error"},
                status_code=500,
            )
        finally:
            if token is not None:
                reset_tenant_context(token)

    def operation_for(self, path: str) -> RateLimitOperation:
        """Map a request path to the operation it is rate limited as."""
        # Longest prefix wins so "/ingest/batch" can be mapped separately from "/ingest"
        for prefix in sorted(self.operation_routes, key=len, reverse=True):
            if path.startswith(prefix):
                return self.operation_routes[prefix]
        return RateLimitOperation.QUERY

    def _should_exclude(self, path: str) -> bool:
        """Check if path should be excluded from tenant auth."""
        for exclude in self.exclude_paths:
            if path.startswith(exclude):
                return True
        return False

    def _get_credential(self, request: Request) -> str | None:
        """
        Extract the credential from request headers.

        Checks in order:
        1. Authorization: Bearer <jwt> | ApiKey <key> | <key>
        2. X-API-Key: <key>
        """
        auth_header = request.headers.get("Authorization")
        if auth_header:
            return auth_header
        return request.headers.get("X-API-Key")

    async def _rate_limited_response(
        self,
        error: RateLimitedError,
        tenant: TenantContext,
        operation: RateLimitOperation,
    ) -> Response:
        headers = {"X-RateLimit-Remaining": "0"}
        if error.retry_after is not None and math.isfinite(error.retry_after):
            headers["Retry-After"] = str(max(1, math.ceil(error.retry_after)))
        info = await self.rate_limiter.get_limit_info(tenant.tenant_id, operation)
        headers["X-RateLimit-Limit"] = str(info.capacity)
        return self._error_response(error, headers=headers)

    async def _add_rate_limit_headers(
        self,
        response: Response,
        tenant: TenantContext,
        operation: RateLimitOperation,
    ) -> None:
        info = await self.rate_limiter.get_limit_info(tenant.tenant_id, operation)
        response.headers["X-RateLimit-Limit"] = str(info.capacity)
        response.headers["X-RateLimit-Remaining"] = str(info.remaining)

    @staticmethod
    def _error_response(
        error: TenancyError,
        headers: dict[str, str] | None = None,
    ) -> JSONResponse:
        return JSONResponse(
            content=error.to_dict(),
            status_code=error.status_code,
            headers=headers,
        )
