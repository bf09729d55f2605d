"""Services package."""
from src.services.crm_client import CrmApiClient, EmailContent

__all__ = [
    "CrmApiClient",
    "EmailContent",
]
