"""피어 모듈 설정.

TURN/STUN 서버, 협상 타임아웃 등 WebRTC 관련 상수와 환경변수 기반 설정.
"""

import os
import logging
from pathlib import Path
from dataclasses import dataclass
from typing import List, Optional

# 환경변수 로드 (상위에서 이미 로드됨)
from dotenv import load_dotenv
from aiortc import RTCConfiguration, RTCIceServer

logger = logging.getLogger(__name__)

_env_path = Path(__file__).parent.parent.parent / "config" / ".env"
load_dotenv(_env_path)


# ============================================================
# ICE Server 설정
# ============================================================

@dataclass(frozen=True)
class ICEServerConfig:
    """ICE 서버 설정."""

    # TURN 서버
    TURN_SERVER_URL: Optional[str] = os.getenv("TURN_SERVER_URL")
    TURN_USERNAME: Optional[str] = os.getenv("TURN_USERNAME")
    TURN_CREDENTIAL: Optional[str] = os.getenv("TURN_CREDENTIAL")

    # STUN 서버
    STUN_SERVER_URL: Optional[str] = os.getenv("STUN_SERVER_URL")

    # 기본 공개 STUN 서버 (fallback)
    DEFAULT_STUN_SERVERS: tuple = (
        "stun:stun.l.google.com:19302",
        "stun:stun1.l.google.com:19302",
    )

    @property
    def has_turn_server(self) -> bool:
        """TURN 서버 설정 완료 여부."""
        return all([self.TURN_SERVER_URL, self.TURN_USERNAME, self.TURN_CREDENTIAL])

    def to_client_list(self) -> List[dict]:
        """브라우저/클라이언트에 내려줄 iceServers 배열.

        Examples:
            >>> ICEServerConfig().to_client_list()[0]
            {'urls': 'stun:stun.l.google.com:19302'}
        """
        servers = []
        if self.STUN_SERVER_URL:
            servers.append({"urls": self.STUN_SERVER_URL})
        for stun_url in self.DEFAULT_STUN_SERVERS:
            servers.append({"urls": stun_url})
        if self.has_turn_server:
            servers.append({
                "urls": self.TURN_SERVER_URL,
                "username": self.TURN_USERNAME,
                "credential": self.TURN_CREDENTIAL,
            })
        return servers

    def to_rtc_configuration(self) -> RTCConfiguration:
        """aiortc RTCPeerConnection용 설정."""
        ice_servers = [
            RTCIceServer(
                urls=[server["urls"]],
                username=server.get("username"),
                credential=server.get("credential"),
            )
            for server in self.to_client_list()
        ]
        return RTCConfiguration(iceServers=ice_servers)


# ============================================================
# 협상 설정
# ============================================================

@dataclass(frozen=True)
class NegotiationConfig:
    """offer/answer 협상 관련 설정."""

    # 연결 완료까지 대기 시간 (초). 0이면 무제한
    NEGOTIATION_TIMEOUT: float = float(os.getenv("NEGOTIATION_TIMEOUT", "30"))

    # ICE 실패 시 자동 재시작 횟수
    ICE_RESTART_ATTEMPTS: int = 1

    @property
    def timeout(self) -> Optional[float]:
        return self.NEGOTIATION_TIMEOUT if self.NEGOTIATION_TIMEOUT > 0 else None


# ============================================================
# 싱글톤 인스턴스
# ============================================================

ice_config = ICEServerConfig()
negotiation_config = NegotiationConfig()


logger.debug(f"[Peer Config] .env 경로: {_env_path} (존재: {_env_path.exists()})")
logger.debug(f"[Peer Config] TURN 서버 설정 완료: {ice_config.has_turn_server}")
