"""
Request-scoped access to the services the app builds at startup
"""
from typing import Optional

from fastapi import Request

from app.core.exceptions import UpstreamUnavailable
from app.services.payment_event_service import PaymentEventProcessor
from app.utils.push_utils import PushDispatcher


def get_dispatcher(request: Request) -> Optional[PushDispatcher]:
    """Push dispatcher, or None when push is not configured"""
    return getattr(request.app.state, "dispatcher", None)


def require_dispatcher(request: Request) -> PushDispatcher:
    dispatcher = get_dispatcher(request)
    if dispatcher is None:
        raise UpstreamUnavailable("Push notifications are not configured")
    return dispatcher


def get_payment_processor(request: Request) -> PaymentEventProcessor:
    processor = getattr(request.app.state, "payment_processor", None)
    if processor is None:
        processor = PaymentEventProcessor(dispatcher=get_dispatcher(request))
        request.app.state.payment_processor = processor
    return processor
