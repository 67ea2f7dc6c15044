"""
Tenant Credential Repository

Data access for the azure_settings table. Client secrets are encrypted on
write and only decrypted when a connector is being built.
"""

from sqlalchemy import select

from sigbridge.core.security import decrypt_secret, encrypt_secret, mask_secret
from sigbridge.models.models import (
    TenantCredential,
    TenantCredentialPublic,
    TenantCredentialUpdate,
)
from sigbridge.models.orm import AzureSettings
from sigbridge.repositories.org_scoped import OrgScopedRepository


class TenantCredentialRepository(OrgScopedRepository[AzureSettings]):
    """
    Repository for an organization's tenant credentials (one row per organization).
    """

    model = AzureSettings

    async def get_settings(self) -> AzureSettings | None:
        """Get the raw settings row for this organization."""
        result = await self.session.execute(self.filter_strict(select(AzureSettings)))
        return result.scalar_one_or_none()

    async def get_credential(self) -> TenantCredential | None:
        """
        Get the decrypted credential for building a connector.

        Returns:
            TenantCredential or None if the organization has no settings
        """
        settings = await self.get_settings()
        if settings is None:
            return None

        return TenantCredential(
            tenant_id=settings.tenant_id,
            client_id=settings.client_id,
            client_secret=decrypt_secret(settings.encrypted_client_secret),
            connection_enabled=settings.is_connected,
            organization_id=settings.organization_id,
        )

    async def get_public(self) -> TenantCredentialPublic | None:
        """Get the credential as shown to administrators (secret masked)."""
        settings = await self.get_settings()
        if settings is None:
            return None
        return self._to_public(settings)

    async def save_credential(self, update: TenantCredentialUpdate) -> TenantCredentialPublic:
        """
        Create or update the organization's credential.

        A missing client_secret keeps the stored one, so the masked value shown
        in the UI never has to be sent back.

        Raises:
            ValueError: If no secret is stored yet and none was provided
        """
        settings = await self.get_settings()

        if settings is None:
            if not update.client_secret:
                raise ValueError("Client secret is required when creating tenant credentials")
            settings = AzureSettings(
                organization_id=self.org_id,
                tenant_id=update.tenant_id.strip(),
                client_id=update.client_id.strip(),
                encrypted_client_secret=encrypt_secret(update.client_secret),
                is_connected=update.connection_enabled,
            )
            settings = await self.create(settings)
        else:
            settings.tenant_id = update.tenant_id.strip()
            settings.client_id = update.client_id.strip()
            if update.client_secret:
                settings.encrypted_client_secret = encrypt_secret(update.client_secret)
            settings.is_connected = update.connection_enabled
            settings = await self.update(settings)

        return self._to_public(settings)

    def _to_public(self, settings: AzureSettings) -> TenantCredentialPublic:
        return TenantCredentialPublic(
            tenant_id=settings.tenant_id,
            client_id=settings.client_id,
            client_secret_masked=mask_secret(decrypt_secret(settings.encrypted_client_secret)),
            connection_enabled=settings.is_connected,
            updated_at=settings.updated_at,
        )
