"""
Write payloads accepted by SyncCoordinator.write.

Any object exposing `endpoint()` and `serialize()` (plus optional `method` and
`kind` attributes) can be written; the queue persists only the serialized
form, so a payload must be fully described by its JSON body.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol, runtime_checkable


@runtime_checkable
class WritePayload(Protocol):
    """Capability interface for anything that can be queued."""

    method: str
    kind: str

    def endpoint(self) -> str:
        ...

    def serialize(self) -> Dict[str, Any]:
        ...


@dataclass
class JsonPayload:
    """Generic payload: a JSON body posted to an endpoint."""

    path: str
    body: Dict[str, Any] = field(default_factory=dict)
    method: str = "POST"
    kind: str = "json"

    def endpoint(self) -> str:
        return self.path

    def serialize(self) -> Dict[str, Any]:
        return dict(self.body)


@dataclass
class PriceSubmissionPayload:
    """A community-sourced cocoa price quote."""

    buyer_name: str
    city: str
    price_per_kg: float
    conditions: Optional[str] = None
    proof_photo_uri: Optional[str] = None
    submitter_name: Optional[str] = None
    submitter_phone: Optional[str] = None

    method = "POST"
    kind = "price_submission"

    def endpoint(self) -> str:
        return "/api/cacau-precos"

    def serialize(self) -> Dict[str, Any]:
        body = {
            "buyerName": self.buyer_name,
            "city": self.city,
            "pricePerKg": self.price_per_kg,
        }
        optional = {
            "conditions": self.conditions,
            "proofPhotoUri": self.proof_photo_uri,
            "submitterName": self.submitter_name,
            "submitterPhone": self.submitter_phone,
        }
        body.update({k: v for k, v in optional.items() if v is not None})
        return body
