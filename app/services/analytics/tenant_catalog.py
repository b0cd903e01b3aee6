# ============================================================================
# Tenant Catalog
# ============================================================================
import logging
from typing import List, Optional, Sequence

from app.services.analytics.stores import Tenant, TenantStore

logger = logging.getLogger(__name__)


class TenantCatalog:
    """Resolves which active schools a query operates over"""

    def __init__(self, store: TenantStore):
        self.store = store

    async def resolve(self, requested_ids: Optional[Sequence[str]] = None) -> List[Tenant]:
        """
        Resolve the tenant set for a query.

        No ids means every active school, ordered by id. Otherwise the
        requested ids are intersected with active schools, keeping the
        caller's order and dropping duplicates. Unknown or inactive ids are
        skipped, and an empty result is a valid answer.
        """
        if not requested_ids:
            return await self.store.find_active_tenants()

        wanted = list(dict.fromkeys(requested_ids))
        found = {t.tenant_id: t for t in await self.store.find_active_tenants(wanted)}

        dropped = [tenant_id for tenant_id in wanted if tenant_id not in found]
        if dropped:
            logger.debug(f"Skipping unknown or inactive schools: {dropped}")

        return [found[tenant_id] for tenant_id in wanted if tenant_id in found]
