"""Health Check / 조회 API 라우터.

서비스 상태, 활성 룸 목록, 클라이언트용 ICE 서버 목록을 제공합니다.
"""

from fastapi import APIRouter, HTTPException

from geomesh.peer.config import ice_config
from . import signaling

router = APIRouter(prefix="/api", tags=["health"])


def _get_coordinator():
    if signaling._coordinator is None:
        raise HTTPException(status_code=503, detail="Coordinator not initialized")
    return signaling._coordinator


@router.get("/health")
async def health_check():
    """릴레이 서비스 상태를 확인합니다.

    Returns:
        dict: 상태와 활성 룸 수, 연결 수
    """
    coordinator = _get_coordinator()
    return {"status": "ok", **coordinator.stats()}


@router.get("/rooms")
async def list_rooms():
    """활성 룸 목록을 반환합니다.

    Returns:
        dict: 룸 이름, 참가자 수, 참가자 ID 목록
    """
    coordinator = _get_coordinator()
    return {"rooms": coordinator.registry.get_room_list()}


@router.get("/ice-servers")
async def ice_servers():
    """클라이언트가 RTCPeerConnection 생성에 사용할 ICE 서버 목록."""
    return {"iceServers": ice_config.to_client_list()}
