from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class ScrapeMethod(str, Enum):
    MODAL = 'modal'
    DIRECT_URL = 'direct_url'


class _CamelModel(BaseModel):
    # stored payloads use camelCase keys; python code uses snake_case attributes
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class JobReference(_CamelModel):
    """Listing entry identified before detail capture."""
    id: str
    href: str


class PriceRange(_CamelModel):
    min: Optional[str] = None
    max: Optional[str] = None


class PaymentTerms(_CamelModel):
    work_type: Optional[str] = None  # Hourly | Fixed-price
    price: Union[PriceRange, str, None] = None
    duration: Optional[str] = None


class ClientLocation(_CamelModel):
    country: Optional[str] = None
    city: Optional[str] = None
    timezone: Optional[str] = None


class ClientJobStats(_CamelModel):
    total_spent: Optional[str] = None
    hires: Optional[str] = None
    posted_jobs: Optional[str] = None
    job_details: Optional[str] = None


class ClientCompany(_CamelModel):
    industry: Optional[str] = None
    size: Optional[str] = None
    member_since: Optional[str] = None


class ClientReputation(_CamelModel):
    payment_verified: bool = False
    rating: Optional[str] = None
    reviews: Optional[str] = None
    location: ClientLocation = Field(default_factory=ClientLocation)
    job_stats: ClientJobStats = Field(default_factory=ClientJobStats)
    company_info: ClientCompany = Field(default_factory=ClientCompany)


class FeedbackParty(_CamelModel):
    name: Optional[str] = None
    url: Optional[str] = None
    rating: Optional[str] = None
    feedback: Optional[str] = None


class ClientEngagement(_CamelModel):
    """One prior contract from the client's history section."""
    job_title: str
    job_url: Optional[str] = None
    freelancer: FeedbackParty = Field(default_factory=FeedbackParty)
    client: FeedbackParty = Field(default_factory=FeedbackParty)
    dates: Optional[str] = None
    payment: Optional[str] = None
    has_feedback: bool = False


class JobRecord(_CamelModel):
    job_id: str
    url: str
    title: str = ''
    description: str = ''
    featured: bool = False
    posted_date: Optional[str] = None
    location: Optional[str] = None
    project_type: Optional[str] = None
    experience_level: Optional[str] = None
    required_connects: Optional[int] = None
    payment: PaymentTerms = Field(default_factory=PaymentTerms)
    skills: List[str] = Field(default_factory=list)
    screening_questions: List[str] = Field(default_factory=list)
    client: ClientReputation = Field(default_factory=ClientReputation)
    client_history: List[ClientEngagement] = Field(default_factory=list)
    scraped_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    scrape_method: ScrapeMethod
    scraped_with_retry: bool = False

    @field_validator('title', 'description', mode='before')
    @classmethod
    def none_to_empty(cls, v):
        if v is None:
            return ''
        return str(v).strip()

    @field_validator('skills', 'screening_questions', mode='before')
    @classmethod
    def ensure_list(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return v

    @field_validator('skills')
    @classmethod
    def unique_skills(cls, v: List[str]) -> List[str]:
        seen = set()
        out = []
        for s in v:
            s = s.strip()
            if s and s.lower() not in seen:
                seen.add(s.lower())
                out.append(s)
        return out

    def missing_required(self) -> List[str]:
        return [name for name in ('title', 'description') if not getattr(self, name).strip()]

    def is_valid(self) -> bool:
        return not self.missing_required()

    def to_store_payload(self) -> dict:
        return self.model_dump(mode='json', by_alias=True)


# ---- processing outcomes ---------------------------------------------------

@dataclass(frozen=True)
class Success:
    record: JobRecord
    status: str = field(default='success', init=False)

    @property
    def job_id(self) -> str:
        return self.record.job_id


@dataclass(frozen=True)
class Skipped:
    job_id: str
    reason: str
    status: str = field(default='skipped', init=False)


@dataclass(frozen=True)
class Failed:
    job_id: str
    error: str
    url: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    status: str = field(default='failed', init=False)


ProcessingOutcome = Union[Success, Skipped, Failed]
