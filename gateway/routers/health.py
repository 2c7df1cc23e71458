from fastapi import APIRouter

router = APIRouter()


@router.get('/health')
async def health():
    """Liveness check. Never touches upstream providers."""
    return {'status': 'ok'}
