"""Contact models - Snapshot records synced from the phone."""

from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field


class PhoneNumber(BaseModel):
    """A single number on a contact card."""
    number: str = Field(..., description="Number as stored on the device")
    label: Optional[str] = Field(None, description="Label such as mobile or home")

    model_config = ConfigDict(extra="ignore", frozen=True)


class Contact(BaseModel):
    """Contact record as synced from the device."""
    name: Optional[str] = Field("", description="Display name")
    phone_numbers: List[PhoneNumber] = Field(
        default_factory=list,
        alias="phoneNumbers",
        description="Numbers in device order"
    )

    model_config = ConfigDict(extra="ignore", frozen=True, populate_by_name=True)

    @property
    def first_number(self) -> Optional[str]:
        """First stored number, if any."""
        for phone in self.phone_numbers:
            if phone.number and phone.number.strip():
                return phone.number
        return None


class SyncRequest(BaseModel):
    """Body of a snapshot sync request."""
    contacts: List[dict] = Field(default_factory=list, description="Raw device contacts")


class SyncResponse(BaseModel):
    """Response for a snapshot sync."""
    ok: bool = True
    count: int
