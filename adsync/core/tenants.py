"""ADSYNC — Tenant Registry.

Per-tenant credential material comes from the external credential manager
as a JSON list (``TENANT_CREDENTIALS_JSON``). The registry only hands it to
platform clients; it never writes or refreshes credentials.
"""

import json
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel, ValidationError as PydanticValidationError

from adsync.config import settings
from adsync.connectors.base import PlatformClient
from adsync.connectors.google.client import GoogleAdsClient
from adsync.connectors.meta.client import MetaClient
from adsync.core.errors import ValidationError
from adsync.core.logging import get_logger
from adsync.models.metric_models import Platform

logger = get_logger("core.tenants")

ClientFactory = Callable[["TenantConfig"], PlatformClient]


class TenantConfig(BaseModel):
    tenant_id: str
    meta_access_token: str = ""
    meta_ad_account_id: str = ""
    google_customer_id: str = ""
    google_access_token: str = ""
    # action_type (or bare custom conversion id) / conversion name → funnel field
    meta_custom_conversions: Dict[str, str] = {}
    google_custom_conversions: Dict[str, str] = {}

    def platforms(self) -> List[Platform]:
        configured = []
        if self.meta_access_token and self.meta_ad_account_id:
            configured.append(Platform.META)
        if self.google_customer_id and self.google_access_token:
            configured.append(Platform.GOOGLE)
        return configured


def _meta_client(tenant: TenantConfig) -> PlatformClient:
    return MetaClient(tenant.meta_access_token, tenant.meta_ad_account_id)


def _google_client(tenant: TenantConfig) -> PlatformClient:
    return GoogleAdsClient(tenant.google_customer_id, tenant.google_access_token)


DEFAULT_CLIENT_FACTORIES: Dict[Platform, ClientFactory] = {
    Platform.META: _meta_client,
    Platform.GOOGLE: _google_client,
}


class TenantRegistry:
    """Looks up tenants and builds their platform clients."""

    def __init__(
        self,
        tenants: Iterable[TenantConfig] = (),
        client_factories: Optional[Dict[Platform, ClientFactory]] = None,
    ):
        self._tenants = {t.tenant_id: t for t in tenants}
        self._factories = client_factories or DEFAULT_CLIENT_FACTORIES

    @classmethod
    def from_json(cls, raw: str) -> "TenantRegistry":
        if not raw.strip():
            return cls()
        try:
            items = json.loads(raw)
            tenants = [TenantConfig.model_validate(item) for item in items]
        except (ValueError, TypeError, PydanticValidationError) as e:
            raise ValidationError(f"Malformed tenant credentials: {e}") from e
        logger.info(f"Loaded {len(tenants)} tenants")
        return cls(tenants)

    @classmethod
    def from_settings(cls) -> "TenantRegistry":
        return cls.from_json(settings.tenant_credentials_json)

    def get(self, tenant_id: str) -> TenantConfig:
        tenant = self._tenants.get(tenant_id)
        if tenant is None:
            raise ValidationError(f"Unknown tenant {tenant_id!r}")
        return tenant

    def tenant_ids(self) -> List[str]:
        return sorted(self._tenants)

    def pairs(self) -> List[Tuple[str, Platform]]:
        """Every (tenant_id, platform) with credentials configured."""
        return [
            (tenant_id, platform)
            for tenant_id in self.tenant_ids()
            for platform in self._tenants[tenant_id].platforms()
        ]

    def require(self, tenant_id: str, platform: Platform) -> TenantConfig:
        """The tenant, provided it has credentials for ``platform``."""
        tenant = self.get(tenant_id)
        if Platform(platform) not in tenant.platforms():
            raise ValidationError(
                f"Tenant {tenant_id!r} has no {Platform(platform).value} credentials"
            )
        return tenant

    def client_for(self, tenant_id: str, platform: Platform) -> PlatformClient:
        tenant = self.require(tenant_id, platform)
        return self._factories[Platform(platform)](tenant)

    def custom_conversions(self, tenant_id: str, platform: Platform) -> Dict[str, str]:
        tenant = self.get(tenant_id)
        if Platform(platform) == Platform.META:
            return tenant.meta_custom_conversions
        return tenant.google_custom_conversions
