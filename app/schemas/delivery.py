from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class RegisterDeliveryResponse(BaseModel):
    ok: bool
    id: str
    status: str


class ConfirmDeliveryRequest(BaseModel):
    # field presence is checked by the reconciler so missing values map to 400
    model_config = ConfigDict(populate_by_name=True)

    delivery_id: str | None = Field(default=None, alias="deliveryId")
    name: str | None = None
    signature: str | None = None


class ConfirmDeliveryResponse(BaseModel):
    ok: bool
    onchain_tx: str
    record_hash: str = Field(serialization_alias="recordHash")


class DeliveryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    callback: str
    pharmacist: str | None
    status: str
    attempts: int
    recipient_name: str | None
    recipient_signature: str | None
    delivered_at: str | None
    pharmacist_reply: str | None
    onchain_hash: str | None
    onchain_txhash: str | None
    onchain_error: str | None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class HealthOut(BaseModel):
    status: str
    active_pollers: int
