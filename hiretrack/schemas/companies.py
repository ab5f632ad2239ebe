from pydantic import BaseModel, Field


class CompanyIn(BaseModel):
    name: str = Field(min_length=1)
    aliases: list[str] = Field(default_factory=list)
    website: str | None = None
    social_handle: str | None = None
    career_page_url: str | None = None
    active: bool = True
