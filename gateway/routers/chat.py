from fastapi import APIRouter, Depends
from fastapi.responses import ORJSONResponse, StreamingResponse

from gateway.config.log import get_logger
from gateway.dependencies import get_chat_service_dependency, get_error_handler_dependency, get_relay_dependency
from gateway.errors import GatewayException
from gateway.models import ChatStreamRequest
from gateway.services.chat import ChatService
from gateway.services.error_handler import ErrorHandlingService
from gateway.services.relay import SseRelay

router = APIRouter()
logger = get_logger(__name__)

SSE_HEADERS = {'Cache-Control': 'no-cache', 'X-Accel-Buffering': 'no'}


@router.post('/chat/stream')
async def chat_stream(
    payload: ChatStreamRequest,
    chat_service: ChatService = Depends(get_chat_service_dependency),
    relay: SseRelay = Depends(get_relay_dependency),
    error_handler: ErrorHandlingService = Depends(get_error_handler_dependency),
):
    """Relay one chat turn as server-sent events.

    Errors found before the stream opens come back as a JSON error body; once
    streaming has started the only error signal is a terminal `error` event.
    """
    try:
        job = await chat_service.prepare(payload)
    except GatewayException as e:
        logger.warning(f'Rejected chat request: {e.message}', error_type=e.error_type)
        return ORJSONResponse(error_handler.get_error_payload(e), status_code=error_handler.get_http_status(e))

    logger.info('Starting chat stream', session_id=job.session_id, model=job.model.alias)
    channel = relay.start(job)
    return StreamingResponse(channel.frames(), media_type='text/event-stream', headers=SSE_HEADERS)
