"""Webhook envelope models.

Only the routing skeleton is typed here (object, entry ids, change field);
change values stay raw dicts for the normalizer. Unknown keys are kept.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

WHATSAPP_OBJECT = "whatsapp_business_account"


class WebhookChange(BaseModel):
    model_config = ConfigDict(extra="allow")

    field: str | None = None
    value: Any = None

    def as_dict(self) -> dict[str, Any]:
        return {"field": self.field, "value": self.value}


class WebhookEntry(BaseModel):
    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    id: str | None = None
    # Unix seconds; left untyped so a bad value cannot reject the envelope
    time: Any = None
    changes: list[WebhookChange] = Field(default_factory=list)


class WebhookEnvelope(BaseModel):
    model_config = ConfigDict(extra="allow")

    object: str | None = None
    entry: list[WebhookEntry] = Field(default_factory=list)

    @property
    def is_whatsapp(self) -> bool:
        return self.object == WHATSAPP_OBJECT
