
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional, Union

# Numeric fields are typed Any so range and type checks happen in the core
# and come back as validation errors rather than 422s.


class CreateSubjectRequest(BaseModel):
    wallet_address: str


class DocumentRefIn(BaseModel):
    document_type: str
    content_hash: str
    archival_ref: Optional[str] = None
    filename: Optional[str] = None


class SubmitRequest(BaseModel):
    personal_info: Dict[str, Any]
    documents: List[DocumentRefIn] = Field(default_factory=list)


class ApproveRequest(BaseModel):
    level: Any


class ReasonRequest(BaseModel):
    reason: str


class ReviewDocumentRequest(BaseModel):
    status: str


class WhitelistRequest(BaseModel):
    address: str


class AssetRequest(BaseModel):
    asset_id: str
    name: str
    symbol: str
    asset_type: str
    initial_supply: Any = 0
    total_asset_value: Optional[Union[str, int, float]] = None
    jurisdiction: Optional[str] = None
    description: Optional[str] = None
    passport_hash: Optional[str] = None
    passport_archival_ref: Optional[str] = None
    chain_id: Optional[int] = None
    issuer: Optional[str] = None


class TransferBody(BaseModel):
    sender: str
    recipient: str
    asset_id: str
    amount: Any


class VerifyTransactionRequest(BaseModel):
    tx_hash: str
