"""
Grant model representing a flow/grant record from the grants snapshot.
"""

from pydantic import BaseModel, Field, field_validator


class Grant(BaseModel):
    """
    An on-chain funding stream.

    Attributes:
        id: Grant identifier
        recipient: Recipient address
        parent_contract: Address of the flow this grant rolls up to
        description: Free-text description
    """

    id: str
    recipient: str
    parent_contract: str = Field(default="", alias="parentContract")
    description: str = ""

    @field_validator("recipient", "parent_contract", "description", mode="before")
    @classmethod
    def empty_if_missing(cls, v):
        return v or ""

    def is_recipient(self, address: str) -> bool:
        """Case-insensitive match against the recipient address."""
        return bool(self.recipient) and self.recipient.lower() == address.lower()

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "id": "0x7eb5cf49bb17a72c10ee78890d2c5b0c7f4c7a3f806c80f488f8739ff3eefeb6",
                "recipient": "0x1111111111111111111111111111111111111111",
                "parentContract": "0x2222222222222222222222222222222222222222",
                "description": "Weekly nounish art drops",
            }
        }
