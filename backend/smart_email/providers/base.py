"""Donor and organization data collaborators."""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


class DonorRecord(BaseModel):
    id: int
    organization_id: str
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    notes: list[str] = Field(default_factory=list)
    assigned_staff_id: Optional[int] = None
    high_potential: bool = False

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class DonationRecord(BaseModel):
    id: int
    donor_id: int
    amount: int  # cents
    date: datetime
    project_id: Optional[int] = None
    project_name: Optional[str] = None


class CommunicationThread(BaseModel):
    id: int
    donor_id: int
    channel: str = "email"
    messages: list[str] = Field(default_factory=list)
    created_at: datetime


class PersonResearch(BaseModel):
    donor_id: int
    answer: str = ""
    profession: Optional[str] = None
    location: Optional[str] = None
    total_sources: int = 0


class OrganizationRecord(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    short_description: Optional[str] = None
    website_url: Optional[str] = None
    website_summary: Optional[str] = None
    writing_instructions: Optional[str] = None
    donor_journey_text: Optional[str] = None
    memories: list[str] = Field(default_factory=list)


class UserRecord(BaseModel):
    id: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email_signature: Optional[str] = None
    memories: list[str] = Field(default_factory=list)


class StaffRecord(BaseModel):
    id: int
    organization_id: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    position: Optional[str] = None
    writing_instructions: Optional[str] = None
    signature: Optional[str] = None


class DonorDataProvider(ABC):
    """Read access to donor records, scoped to an organization."""

    @abstractmethod
    async def get_donors(self, donor_ids: list[int], organization_id: str) -> list[DonorRecord]:
        ...

    @abstractmethod
    async def list_donations(self, donor_id: int, organization_id: str) -> list[DonationRecord]:
        ...

    @abstractmethod
    async def list_communications(self, donor_id: int, organization_id: str) -> list[CommunicationThread]:
        ...

    @abstractmethod
    async def get_person_research(self, donor_id: int, organization_id: str) -> Optional[PersonResearch]:
        ...


class OrganizationDataProvider(ABC):
    """Read access to organization, user and staff records."""

    @abstractmethod
    async def get_organization(self, organization_id: str) -> Optional[OrganizationRecord]:
        ...

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[UserRecord]:
        ...

    @abstractmethod
    async def get_staff_by_email(self, email: str, organization_id: str) -> Optional[StaffRecord]:
        ...
