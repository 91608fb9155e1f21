"""In-memory data provider, seeded from a dict or a JSON file."""
import json
import logging
from pathlib import Path
from typing import Optional

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

logger = logging.getLogger(__name__)


class InMemoryDataProvider(DonorDataProvider, OrganizationDataProvider):
    """Serves donor and organization records held in process memory."""

    def __init__(
        self,
        donors: Optional[list[DonorRecord]] = None,
        donations: Optional[list[DonationRecord]] = None,
        communications: Optional[list[CommunicationThread]] = None,
        research: Optional[list[PersonResearch]] = None,
        organizations: Optional[list[OrganizationRecord]] = None,
        users: Optional[list[UserRecord]] = None,
        staff: Optional[list[StaffRecord]] = None,
    ):
        self.donors = {d.id: d for d in donors or []}
        self.donations = list(donations or [])
        self.communications = list(communications or [])
        self.research = {r.donor_id: r for r in research or []}
        self.organizations = {o.id: o for o in organizations or []}
        self.users = {u.id: u for u in users or []}
        self.staff = list(staff or [])

    @classmethod
    def from_seed(cls, data: dict) -> "InMemoryDataProvider":
        """Build a provider from a dict keyed by record kind."""
        return cls(
            donors=[DonorRecord(**d) for d in data.get("donors", [])],
            donations=[DonationRecord(**d) for d in data.get("donations", [])],
            communications=[CommunicationThread(**c) for c in data.get("communications", [])],
            research=[PersonResearch(**r) for r in data.get("research", [])],
            organizations=[OrganizationRecord(**o) for o in data.get("organizations", [])],
            users=[UserRecord(**u) for u in data.get("users", [])],
            staff=[StaffRecord(**s) for s in data.get("staff", [])],
        )

    @classmethod
    def from_file(cls, path: str) -> "InMemoryDataProvider":
        with Path(path).open(encoding="utf-8") as f:
            data = json.load(f)
        provider = cls.from_seed(data)
        logger.info(
            "Loaded seed data",
            extra={"path": path, "donors": len(provider.donors), "organizations": len(provider.organizations)},
        )
        return provider

    def _owned(self, donor_id: int, organization_id: str) -> bool:
        donor = self.donors.get(donor_id)
        return donor is not None and donor.organization_id == organization_id

    async def get_donors(self, donor_ids: list[int], organization_id: str) -> list[DonorRecord]:
        return [self.donors[i] for i in donor_ids if self._owned(i, organization_id)]

    async def list_donations(self, donor_id: int, organization_id: str) -> list[DonationRecord]:
        if not self._owned(donor_id, organization_id):
            return []
        return [d for d in self.donations if d.donor_id == donor_id]

    async def list_communications(self, donor_id: int, organization_id: str) -> list[CommunicationThread]:
        if not self._owned(donor_id, organization_id):
            return []
        threads = [c for c in self.communications if c.donor_id == donor_id]
        return sorted(threads, key=lambda c: c.created_at, reverse=True)

    async def get_person_research(self, donor_id: int, organization_id: str) -> Optional[PersonResearch]:
        if not self._owned(donor_id, organization_id):
            return None
        return self.research.get(donor_id)

    async def get_organization(self, organization_id: str) -> Optional[OrganizationRecord]:
        return self.organizations.get(organization_id)

    async def get_user(self, user_id: str) -> Optional[UserRecord]:
        return self.users.get(user_id)

    async def get_staff_by_email(self, email: str, organization_id: str) -> Optional[StaffRecord]:
        for member in self.staff:
            if member.organization_id == organization_id and member.email.lower() == email.lower():
                return member
        return None
