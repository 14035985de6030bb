from fastapi import APIRouter, Depends

from smartshop.api.deps import shopping_assistant
from smartshop.api.schemas import ChatIn, CompareIn, ImageIn
from smartshop.services.assistant import ShoppingAssistant

router = APIRouter()  # main.py mounts at /assistant


@router.post('/chat')
def chat(payload: ChatIn, assistant: ShoppingAssistant = Depends(shopping_assistant)):
    return assistant.chat(payload.message)

@router.post('/analyze')
def analyze(payload: ChatIn, assistant: ShoppingAssistant = Depends(shopping_assistant)):
    return assistant.analyze_query(payload.message)

@router.post('/compare')
def compare(payload: CompareIn, assistant: ShoppingAssistant = Depends(shopping_assistant)):
    return assistant.compare_products(payload.product_ids, payload.preferences)

@router.post('/image')
def analyze_image(payload: ImageIn, assistant: ShoppingAssistant = Depends(shopping_assistant)):
    return assistant.analyze_image(payload.image_base64, payload.media_type)
