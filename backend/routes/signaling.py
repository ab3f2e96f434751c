"""시그널링 WebSocket 라우터.

룸 참가/퇴장, WebRTC 시그널 중계, 위치 갱신을 위한 WebSocket 엔드포인트를
제공합니다. 메시지 처리는 RelayCoordinator에 위임합니다.
"""

import logging
from typing import Optional, TYPE_CHECKING

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from geomesh.shared.errors import ConnectivityError

if TYPE_CHECKING:
    from geomesh.relay import RelayCoordinator

logger = logging.getLogger(__name__)

router = APIRouter()

# 글로벌 코디네이터 참조 (app.py lifespan에서 설정됨)
_coordinator: Optional["RelayCoordinator"] = None


def init_managers(coordinator: Optional["RelayCoordinator"]):
    """코디네이터 인스턴스를 설정합니다.

    app.py에서 호출하여 글로벌 코디네이터 참조를 설정합니다. 종료 시 None을
    넘겨 해제합니다.

    Args:
        coordinator: RelayCoordinator 인스턴스
    """
    global _coordinator
    _coordinator = coordinator
    logger.info(f"시그널링 라우터 코디네이터 {'초기화' if coordinator else '해제'} 완료")


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """시그널링을 위한 WebSocket 엔드포인트.

    연결마다 수신 루프 하나가 메시지를 순서대로 코디네이터에 전달합니다.

    처리하는 메시지 타입:
        - join-room: 룸 참가 (룸 이름 문자열 또는 {roomId})
        - leave-room: 현재 룸에서 퇴장
        - webrtc-signal: offer/answer/candidate 중계
        - location-update: 위치 저장 및 전달

    Args:
        websocket: FastAPI WebSocket 연결 객체
    """
    if _coordinator is None:
        logger.error("코디네이터가 초기화되지 않음")
        await websocket.close(code=1011, reason="Server not ready")
        return

    await websocket.accept()
    peer_id = await _coordinator.connect(websocket)

    try:
        while True:
            try:
                message = await websocket.receive_json()
            except ValueError as e:
                # JSON이 아닌 프레임은 버리고 연결은 유지
                logger.warning(f"피어 {peer_id[:8]}의 잘못된 프레임 무시: {e}")
                continue
            await _coordinator.dispatch(peer_id, message)

    except WebSocketDisconnect:
        logger.info(f"피어 {peer_id[:8]} 연결 끊김")
    except ConnectivityError as e:
        logger.warning(f"피어 {peer_id[:8]} 연결 오류: {e}")
    except Exception as e:
        logger.error(f"피어 {peer_id[:8]} WebSocket 처리 중 오류: {e}", exc_info=True)
    finally:
        await _coordinator.disconnect(peer_id)
