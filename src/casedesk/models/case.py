"""Case data models.

Key Models:
- Case: immutable snapshot of one support case
- Comment / Attachment: case conversation and files
- CaseBundle: a case plus its comments and attachments, fetched together
- CaseFilter: list/search criteria
- ListPage: one page of list results
- SearchResult: one knowledge base or case search hit
- Account: a customer account seen on accessible cases

The remote API is camelCase and not always consistent about field names
(comment text and attachment sizes arrive under several keys), so the models
accept every known spelling and expose one normalized property.
"""

from datetime import datetime, timezone
from typing import Any, List, Optional

from pydantic import AfterValidator, BaseModel, BeforeValidator, Field, field_validator
from typing_extensions import Annotated

from casedesk.models.common import utc_now

EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _assume_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# The service sends "" for dates it does not know, and dates without an offset are UTC
OptionalDatetime = Annotated[
    Optional[datetime], BeforeValidator(_blank_to_none), AfterValidator(_assume_utc)
]


class Case(BaseModel):
    """Snapshot of a support case.

    A later fetch replaces the snapshot; instances are never mutated.
    """

    case_number: str = Field(alias="caseNumber", description="Stable case identifier")
    summary: str = Field(default="", description="One-line summary")
    description: str = Field(default="", description="Problem description (may contain HTML)")
    status: str = Field(default="", description="Case status as reported by the service")
    severity: str = Field(default="", description="Case severity as reported by the service")
    product: str = Field(default="")
    version: str = Field(default="")
    type: str = Field(default="")
    account_number: str = Field(default="", alias="accountNumber")
    account_name: str = Field(default="", alias="accountName")
    contact_name: str = Field(default="", alias="contactName")
    contact_email: str = Field(default="", alias="contactEmail")
    owner: str = Field(default="")
    created_by: str = Field(default="", alias="createdBy")
    created_date: OptionalDatetime = Field(default=None, alias="createdDate")
    last_modified: OptionalDatetime = Field(default=None, alias="lastModifiedDate")
    closed_date: OptionalDatetime = Field(default=None, alias="closedDate")
    uri: str = Field(default="")

    class Config:
        populate_by_name = True
        frozen = True
        extra = "ignore"


class Comment(BaseModel):
    """One entry of a case conversation."""

    id: str = Field(default="")
    case_number: str = Field(default="", alias="caseNumber")
    text: str = Field(default="")
    comment_body: str = Field(default="", alias="commentBody")
    author: str = Field(default="", alias="createdBy")
    author_email: str = Field(default="", alias="createdByEmail")
    created_date: OptionalDatetime = Field(default=None, alias="createdDate")
    last_modified: OptionalDatetime = Field(default=None, alias="lastModifiedDate")
    public: bool = Field(default=False)
    is_public_flag: bool = Field(default=False, alias="isPublic")
    case_public: bool = Field(default=False, alias="casePublic")
    draft: bool = Field(default=False)

    @property
    def body(self) -> str:
        """Comment text, whichever field the service used."""
        return self.comment_body or self.text

    @property
    def is_public(self) -> bool:
        """True if any of the public flags is set."""
        return self.public or self.is_public_flag or self.case_public

    class Config:
        populate_by_name = True
        frozen = True
        extra = "ignore"


class Attachment(BaseModel):
    """A file attached to a case."""

    uuid: str = Field(default="", description="Content identifier used for downloads")
    filename: str = Field(default="", alias="fileName")
    description: str = Field(default="")
    length: int = Field(default=0)
    size: int = Field(default=0)
    file_size: int = Field(default=0, alias="fileSize")
    content_length: int = Field(default=0, alias="contentLength")
    mime_type: str = Field(default="", alias="mimeType")
    created_by: str = Field(default="", alias="createdBy")
    created_date: OptionalDatetime = Field(default=None, alias="createdDate")

    @property
    def byte_size(self) -> int:
        """Size in bytes, whichever field the service used."""
        for value in (self.length, self.size, self.file_size, self.content_length):
            if value:
                return value
        return 0

    class Config:
        populate_by_name = True
        frozen = True
        extra = "ignore"


class CaseBundle(BaseModel):
    """A case plus its comments and attachments.

    Produced by a single fetch. When the case itself was fetched but the
    comments or attachments were not, the missing piece is empty and the
    matching ``*_error`` field says why.
    """

    case: Case
    comments: List[Comment] = Field(default_factory=list, description="Oldest first")
    attachments: List[Attachment] = Field(default_factory=list)
    comments_error: Optional[str] = Field(default=None)
    attachments_error: Optional[str] = Field(default=None)
    fetched_at: datetime = Field(default_factory=utc_now)

    @field_validator("comments")
    @classmethod
    def sort_comments(cls, comments: List[Comment]) -> List[Comment]:
        """Keep the conversation in chronological order."""
        return sorted(comments, key=lambda c: c.created_date or EPOCH)

    @property
    def case_number(self) -> str:
        return self.case.case_number

    @property
    def is_partial(self) -> bool:
        """True if comments or attachments failed to load."""
        return self.comments_error is not None or self.attachments_error is not None

    class Config:
        frozen = True


class CaseFilter(BaseModel):
    """Criteria for listing cases."""

    status: List[str] = Field(default_factory=list)
    severity: List[str] = Field(default_factory=list)
    products: List[str] = Field(default_factory=list)
    keyword: str = Field(default="")
    accounts: List[str] = Field(default_factory=list, description="Account numbers")
    group_number: str = Field(default="")
    owner: str = Field(default="", description="Owner SSO name")
    start_date: Optional[datetime] = Field(default=None, description="Created on/after")
    end_date: Optional[datetime] = Field(default=None, description="Created on/before")
    include_closed: bool = Field(default=False)

    @property
    def is_empty(self) -> bool:
        return self == CaseFilter()


class ListPage(BaseModel):
    """One page of list results in server order."""

    items: List[Case] = Field(default_factory=list)
    offset: int = Field(default=0, ge=0)
    total_count: int = Field(default=0, ge=0)

    class Config:
        frozen = True


class SearchResult(BaseModel):
    """One hit of a knowledge base or case search."""

    type: str = Field(description='"case", "solution" or "article"')
    id: str
    title: str = Field(default="")
    abstract: str = Field(default="")
    uri: str = Field(default="")

    class Config:
        frozen = True


class Account(BaseModel):
    """A customer account, as named on its cases."""

    number: str
    name: str = Field(default="")

    class Config:
        frozen = True
