from pydantic import BaseModel, Field


class ChallengeOut(BaseModel):
    challenge_code: str = Field(serialization_alias="challengeCode")
    challenge_response: str = Field(serialization_alias="challengeResponse")


class PushAccepted(BaseModel):
    notifications: int
    accepted: int
    ignored: int
    duplicates: int
    unmatched: int
    candidates: int
    rejected: int
    inserted: int
    replaced: int
    discarded: int
    notified: int
