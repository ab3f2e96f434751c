"""FastAPI 시그널링 서버 (룸 기반 메시 + 실시간 위치 공유).

이 모듈은 브라우저/헤드리스 클라이언트가 같은 룸의 다른 참가자와 직접
WebRTC 메시 연결을 맺을 수 있도록 시그널링을 중계하는 서버를 제공합니다.
미디어는 서버를 거치지 않습니다.

주요 기능:
    - 룸 기반 참가자 관리 (참가자가 있는 동안만 룸 유지)
    - WebRTC offer/answer/candidate 중계 (내용은 해석하지 않음)
    - 실시간 참가자 입/퇴장 알림
    - 참가자 위치 저장 및 팬아웃
    - CORS 설정을 통한 크로스 오리진 요청 지원

Architecture:
    - P2P 메시 패턴 (서버는 시그널링만 담당)
    - RoomRegistry: 룸 및 참가자 멤버십 상태
    - RelayCoordinator: 이벤트 디스패치와 팬아웃
    - WebSocket: 실시간 시그널링 메시지 전송
"""
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from geomesh.relay import RelayCoordinator, RoomRegistry, server_config
from routes import health_router, signaling_router, init_signaling_managers

SERVICE_NAME = "geomesh Signaling Server"


def _log_handlers() -> list:
    handlers = [logging.StreamHandler()]  # 콘솔 출력
    if server_config.LOG_DIR:
        os.makedirs(server_config.LOG_DIR, exist_ok=True)
        log_filename = os.path.join(
            server_config.LOG_DIR, f"server_{datetime.now().strftime('%Y%m%d')}.log"
        )
        handlers.append(logging.FileHandler(log_filename, encoding="utf-8"))  # 파일 저장
    return handlers


logging.basicConfig(
    level=getattr(logging, server_config.LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=_log_handlers(),
)
logger = logging.getLogger(__name__)
logger.info(f"로깅 초기화 완료: level={server_config.LOG_LEVEL}, dir={server_config.LOG_DIR}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """FastAPI 앱의 생명주기를 관리하는 컨텍스트 매니저.

    시작 시 룸 레지스트리와 코디네이터를 만들어 라우터에 주입하고, 종료 시
    참조를 해제합니다. 레지스트리는 프로세스 단위이며 디스크에 저장하지 않습니다.

    Args:
        app (FastAPI): FastAPI 애플리케이션 인스턴스

    Yields:
        None: 앱이 실행되는 동안 제어를 반환
    """
    logger.info("시그널링 서버 시작 중...")

    registry = RoomRegistry()
    coordinator = RelayCoordinator(registry)
    app.state.coordinator = coordinator
    init_signaling_managers(coordinator)

    yield

    logger.info(f"서버 종료 중... (남은 연결 {len(coordinator.connections)}개, 룸 {len(registry.rooms)}개)")
    init_signaling_managers(None)


app = FastAPI(title=SERVICE_NAME, lifespan=lifespan)

allow_all = "*" in server_config.CORS_ORIGINS
app.add_middleware(
    CORSMiddleware,
    allow_origins=list(server_config.CORS_ORIGINS),
    allow_credentials=not allow_all,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 라우터 등록
app.include_router(health_router)
app.include_router(signaling_router)


@app.get("/")
async def root():
    """서버 상태 확인 엔드포인트 (Health check).

    Returns:
        dict: 서버 상태 정보를 포함하는 딕셔너리
            - status (str): 서버 상태
            - service (str): 서비스 이름

    Examples:
        >>> response = await root()
        >>> print(response)
        {"status": "ok", "service": "geomesh Signaling Server"}
    """
    return {"status": "ok", "service": SERVICE_NAME}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=server_config.HOST, port=server_config.PORT, log_level="info")
