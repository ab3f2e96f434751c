"""geomesh: 룸 단위 WebRTC 메시 시그널링과 실시간 위치 공유.

Subpackages:
    shared: 와이어 스키마와 예외
    relay: 서버측 룸 레지스트리와 릴레이 코디네이터
    peer: 클라이언트측 세션과 피어 링크
"""

__version__ = "0.1.0"
