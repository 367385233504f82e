from pydantic import BaseModel, Field
from typing import Literal, Optional, List, Dict


class ProductCard(BaseModel):
    title: str
    price: Optional[str] = None
    image_url: Optional[str] = None
    link: Optional[str] = None


class HallucinationRisk(BaseModel):
    score: int = 0
    level: Literal["low", "medium", "high"] = "low"
    reasons: List[str] = []


class ReplyPayload(BaseModel):
    text: str
    kind: Literal["answer", "clarification"] = "answer"
    confidence: Literal["high", "medium", "low"] = "medium"
    hallucination_risk: HallucinationRisk = Field(default_factory=HallucinationRisk)
    citations: Dict[str, List[int]] = Field(default_factory=lambda: {"faq": [], "document": []})
    product_cards: List[ProductCard] = []
    no_info: bool = False


class InboundMessageRequest(BaseModel):
    content: str = Field(..., min_length=1, max_length=4000)
    channel: Optional[str] = Field(default=None, description="Only used when the conversation is created")
    private: bool = False


class InboundMessageResponse(BaseModel):
    conversation_id: int
    message_id: int
    generation: int
    scheduled: bool
