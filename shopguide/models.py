from __future__ import annotations

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field


class ChatMessage(BaseModel):
    """One prior turn as the client recorded it."""
    role: str
    content: str = ""


class CartItemPayload(BaseModel):
    """Cart line held by the client."""
    variant_id: str
    title: str = ""
    quantity: int = Field(default=1, ge=1)
    price: Optional[str] = None


class ChatRequest(BaseModel):
    """Request payload for the chat API."""
    session_id: Optional[str] = Field(default=None)
    current_message: str = Field(min_length=1)
    chat_history: List[ChatMessage] = Field(default_factory=list)
    intent_id: Optional[str] = None
    offset: int = Field(default=0, ge=0)
    action: Optional[Literal["add_to_cart", "cart_summary", "place_order"]] = None
    product_index: Optional[int] = None
    cart_items: List[CartItemPayload] = Field(default_factory=list)
    address: Optional[Dict[str, Any]] = None
    last_products: List[Dict[str, Any]] = Field(default_factory=list)
    draft_order_id: Optional[str] = None
    conversation_state: Optional[Dict[str, Any]] = None
    clarification_count: Optional[int] = Field(default=None, ge=0)


class _TurnResponse(BaseModel):
    conversation_state: Dict[str, Any] = Field(default_factory=dict)
    thinking_logs: List[Dict[str, str]] = Field(default_factory=list)


class ClarificationResponse(_TurnResponse):
    response_type: Literal["clarification"] = "clarification"
    intent_id: Optional[str] = None
    confidence: float = 0.0
    missing_info: List[str] = Field(default_factory=list)
    acknowledgement: str
    clarifying_question: str
    explanation: str
    clarification_count: Optional[int] = None


class RecommendationResponse(_TurnResponse):
    response_type: Literal["recommendation"] = "recommendation"
    intent_id: Optional[str] = None
    confidence: float = 0.0
    primary_recommendation: Optional[Dict[str, Any]] = None
    secondary_recommendations: List[Dict[str, Any]] = Field(default_factory=list)
    decision_frame: Optional[str] = None
    acknowledgement: str
    explanation: str = ""
    next_page_offset: Optional[int] = None
    alternatives: Optional[List[Dict[str, Any]]] = None
    exit_options: Optional[List[str]] = None
    recovery_scenario: Optional[str] = None


class CartActionResponse(_TurnResponse):
    response_type: Literal["cart_action"] = "cart_action"
    action: Literal["add"] = "add"
    product_id: str
    variant_id: str
    product_title: str
    acknowledgement: str
    suggested_addons: List[Dict[str, Any]] = Field(default_factory=list)
    addon_message: Optional[str] = None


class CartSummaryResponse(_TurnResponse):
    response_type: Literal["cart_summary"] = "cart_summary"
    items: List[Dict[str, Any]]
    subtotal: str
    shipping: str
    tax: str
    total: str
    currency: str
    acknowledgement: str
    draft_order_id: Optional[str] = None


class OrderPlacedResponse(_TurnResponse):
    response_type: Literal["order_placed"] = "order_placed"
    order_id: str
    order_number: str
    total: str
    currency: str
    acknowledgement: str


class ImageGenerationResponse(_TurnResponse):
    response_type: Literal["image_generation"] = "image_generation"
    intent_id: Optional[str] = None
    outcome_description: str
    images: List[Dict[str, str]]
    cached_products: Optional[List[Dict[str, Any]]] = None
    acknowledgement: str
    explanation: str = ""
    inferred_persona: Optional[str] = None


ChatResponse = Annotated[
    Union[
        ClarificationResponse,
        RecommendationResponse,
        CartActionResponse,
        CartSummaryResponse,
        OrderPlacedResponse,
        ImageGenerationResponse,
    ],
    Field(discriminator="response_type"),
]
