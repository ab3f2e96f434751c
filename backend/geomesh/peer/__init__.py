"""피어(클라이언트) 모듈.

세션 클라이언트, 피어 링크 상태 머신, 전송/미디어/화면 협력자를 제공합니다.

Classes:
    SessionClient: 코디네이터 이벤트에 반응해 피어 링크 메시를 유지
    PeerLink: 원격 참가자 한 명과의 offer/answer/ICE 상태 머신
    LinkState: 피어 링크 상태
    AiortcPeerTransport: RTCPeerConnection 기반 PeerTransport 구현
    PlayerMediaSource: aiortc MediaPlayer 기반 로컬 미디어 소스
    LoggingDisplay: 로그를 남기는 기본 Display 구현
    SignalingChannel: websockets 기반 코디네이터 채널

Config:
    ice_config: ICE 서버 설정
    negotiation_config: 협상 타임아웃 설정
"""

from .transport import PeerTransport, AiortcPeerTransport
from .media import LocalMediaSource, MediaStream, PlayerMediaSource
from .display import Display, LoggingDisplay
from .peer_link import PeerLink, LinkState
from .session import SessionClient
from .channel import SignalingChannel
from .config import (
    ice_config,
    negotiation_config,
    ICEServerConfig,
    NegotiationConfig,
)

__all__ = [
    # Classes
    "PeerTransport",
    "AiortcPeerTransport",
    "LocalMediaSource",
    "MediaStream",
    "PlayerMediaSource",
    "Display",
    "LoggingDisplay",
    "PeerLink",
    "LinkState",
    "SessionClient",
    "SignalingChannel",
    # Config
    "ice_config",
    "negotiation_config",
    "ICEServerConfig",
    "NegotiationConfig",
]
