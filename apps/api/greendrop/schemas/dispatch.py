from pydantic import BaseModel


class MatchCandidateItem(BaseModel):
    driver_id: str
    name: str
    distance_km: float
    score: float


class MatchCandidatesResponse(BaseModel):
    candidates: list[MatchCandidateItem]


class MatchResponse(BaseModel):
    order_id: str
    assigned: bool
    already_assigned: bool = False
    driver_id: str | None = None
    driver_name: str | None = None
