# backend/stockhold/schemas/inventory_schema.py
from datetime import datetime
from typing import List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field

from stockhold.models.stock_movement import MovementType, StockCounter
from stockhold.models.stock_reservation import ReservationStatus


class ReserveIn(BaseModel):
    variant_id: int
    quantity: int = Field(..., gt=0)
    hold_minutes: Optional[int] = Field(None, gt=0)
    cart_ref: Optional[str] = Field(None, max_length=128)


class CartLineIn(BaseModel):
    variant_id: int
    quantity: int = Field(..., gt=0)


class ReserveCartIn(BaseModel):
    cart_ref: Optional[str] = Field(None, max_length=128)
    items: List[CartLineIn] = Field(..., min_length=1)
    hold_minutes: Optional[int] = Field(None, gt=0)


class ExtendIn(BaseModel):
    additional_minutes: int = Field(..., gt=0)


class ConfirmIn(BaseModel):
    order_ref: str = Field(..., min_length=1, max_length=128)


class ReleaseIn(BaseModel):
    reason: str = Field("released", min_length=1, max_length=64)


class RegisterVariantIn(BaseModel):
    sku: str = Field(..., min_length=1, max_length=64)
    product_sku: Optional[str] = Field(None, max_length=64)
    product_name: Optional[str] = Field(None, max_length=256)
    size: Optional[str] = Field(None, max_length=32)
    color: Optional[str] = Field(None, max_length=64)
    initial_on_hand: int = Field(0, ge=0)
    low_stock_threshold: Optional[int] = Field(None, ge=0)
    product_low_stock_threshold: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None


class AdjustIn(BaseModel):
    delta: int
    reason: Optional[str] = Field(None, max_length=255)
    movement_type: Literal["restock", "adjustment"] = "adjustment"
    reference_id: Optional[str] = Field(None, max_length=128)


class SetStockIn(BaseModel):
    new_on_hand: int = Field(..., ge=0)
    expected_on_hand: Optional[int] = Field(None, ge=0)
    reason: Optional[str] = Field(None, max_length=255)
    reference_id: Optional[str] = Field(None, max_length=128)


class StockUpdateIn(BaseModel):
    variant_id: int
    new_on_hand: int = Field(..., ge=0)
    expected_on_hand: Optional[int] = Field(None, ge=0)


class BatchStockIn(BaseModel):
    updates: List[StockUpdateIn] = Field(..., min_length=1)
    reason: Optional[str] = Field(None, max_length=255)
    reference_id: Optional[str] = Field(None, max_length=128)


class PaymentCallbackIn(BaseModel):
    order_ref: str = Field(..., min_length=1, max_length=128)
    reservation_ids: List[int] = Field(..., min_length=1)
    status: Literal["succeeded", "failed", "cancelled"]
    reason: Optional[str] = Field(None, max_length=64)


class ResolveIssueIn(BaseModel):
    note: Optional[str] = None


class ReservationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    variant_id: int
    quantity: int
    status: ReservationStatus
    cart_ref: Optional[str] = None
    order_ref: Optional[str] = None
    release_reason: Optional[str] = None
    created_at: datetime
    expires_at: datetime
    confirmed_at: Optional[datetime] = None
    released_at: Optional[datetime] = None


class VariantOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    sku: str
    product_id: Optional[int] = None
    size: Optional[str] = None
    color: Optional[str] = None
    quantity_on_hand: int
    quantity_reserved: int
    quantity_available: int
    low_stock_threshold: Optional[int] = None
    is_active: bool


class MovementOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    variant_id: int
    movement_type: MovementType
    counter: StockCounter
    quantity: int
    quantity_before: int
    quantity_after: int
    reason: Optional[str] = None
    reference_id: Optional[str] = None
    created_at: datetime


class AlertOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    variant_id: int
    alert_type: str
    status: str
    priority: str
    threshold_value: Optional[int] = None
    current_value: Optional[int] = None
    created_at: datetime
    updated_at: Optional[datetime] = None


class ReconciliationIssueOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    reservation_id: int
    order_ref: str
    outcome: str
    detail: Optional[str] = None
    status: str
    resolution_note: Optional[str] = None
    created_at: datetime
    resolved_at: Optional[datetime] = None
