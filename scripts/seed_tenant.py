#!/usr/bin/env python
"""Insert or update a tenant in the tenants table and register its API key."""

import argparse
import asyncio
import sys
import time
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from tenancy_core.config import get_settings
from tenancy_core.observability.logging import configure_logging
from tenancy_core.tenancy.db_store import DbTenantStorage
from tenancy_core.tenancy.models import TenantContext, TenantTier
from tenancy_core.tenancy.tokens import encode_token


async def main() -> None:
    parser = argparse.ArgumentParser(description="Seed a tenant into the tenants table")
    parser.add_argument("--tenant-id", required=True, help="Tenant ID (e.g. acme-corp)")
    parser.add_argument("--organization-id", default=None, help="Owning organization")
    parser.add_argument("--api-key", default=None, help="API key to register for this tenant")
    parser.add_argument(
        "--tier",
        choices=[t.value for t in TenantTier],
        default=TenantTier.STANDARD.value,
        help="Tier (default: standard)",
    )
    parser.add_argument(
        "--issue-token",
        type=int,
        metavar="SECONDS",
        default=None,
        help="Also print a signed bearer token valid for SECONDS (needs TENANCY_JWT_SECRET)",
    )
    args = parser.parse_args()

    settings = get_settings()
    configure_logging(settings=settings)
    store = DbTenantStorage(database_url=settings.database_url)
    await store.connect()
    try:
        tenant = TenantContext(
            tenant_id=args.tenant_id,
            organization_id=args.organization_id,
            tier=TenantTier(args.tier),
        )
        await store.save(tenant)
        print(f"Tenant {args.tenant_id} upserted (tier={tenant.tier.value})")

        if args.api_key:
            await store.add_api_key(args.tenant_id, args.api_key)
            mask = f"...{args.api_key[-4:]}" if len(args.api_key) >= 4 else "***"
            print(f"API key registered (api_key={mask})")
    finally:
        await store.close()

    if args.issue_token is not None:
        if not settings.jwt_secret:
            parser.error("--issue-token requires TENANCY_JWT_SECRET to be set")
        now = int(time.time())
        token = encode_token(
            {"tenant_id": args.tenant_id, "iat": now, "exp": now + args.issue_token},
            settings.jwt_secret,
        )
        print(f"Bearer token: {token}")


if __name__ == "__main__":
    asyncio.run(main())
