"""Member repository for the Circulation Engine."""

from uuid import uuid4

from pydantic import BaseModel, EmailStr, Field

from ..models.member import Member as MemberModel
from ..models.member import MembershipType, MemberStatus
from .repository import BaseRepository
from .schema import Member as MemberDB


def generate_member_id() -> str:
    return f"member_{uuid4().hex[:12]}"


class MemberCreateSchema(BaseModel):
    id: str = Field(default_factory=generate_member_id)
    name: str = Field(..., min_length=2, max_length=200)
    email: EmailStr
    status: MemberStatus = MemberStatus.PENDING
    membership_type: MembershipType = MembershipType.NORMAL


class MemberUpdateSchema(BaseModel):
    name: str | None = None
    status: MemberStatus | None = None
    membership_type: MembershipType | None = None


class MemberRepository(
    BaseRepository[MemberDB, MemberCreateSchema, MemberUpdateSchema, MemberModel]
):
    """Repository for members; status changes are made by the membership service."""

    @property
    def model_class(self) -> type[MemberDB]:
        return MemberDB

    @property
    def response_schema(self) -> type[MemberModel]:
        return MemberModel

    def set_status(self, member_id: str, status: MemberStatus) -> MemberModel:
        return self.update(member_id, MemberUpdateSchema(status=status))
