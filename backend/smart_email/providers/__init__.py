"""Data provider package."""
from .base import (
    CommunicationThread,
    DonationRecord,
    DonorDataProvider,
    DonorRecord,
    OrganizationDataProvider,
    OrganizationRecord,
    PersonResearch,
    StaffRecord,
    UserRecord,
)
from .memory import InMemoryDataProvider

__all__ = [
    "CommunicationThread",
    "DonationRecord",
    "DonorDataProvider",
    "DonorRecord",
    "InMemoryDataProvider",
    "OrganizationDataProvider",
    "OrganizationRecord",
    "PersonResearch",
    "StaffRecord",
    "UserRecord",
]
