"""시그널링 시스템 예외 정의.

룸 단위/링크 단위로 격리되어 처리되는 오류 분류입니다.

Classes:
    GeomeshError: 모든 예외의 기반 클래스
    ConnectivityError: 참가자 전송 계층 연결 끊김
    SignalingError: 형식이 잘못되었거나 라우팅할 수 없는 시그널링 메시지
    MediaAcquisitionError: 로컬 미디어 획득 실패
    NegotiationError: ICE 실패 또는 협상 타임아웃
"""


class GeomeshError(Exception):
    """geomesh 예외 기반 클래스."""


class ConnectivityError(GeomeshError):
    """참가자의 코디네이터 연결이 끊어졌을 때 발생합니다.

    서버에서는 퇴장 절차를 트리거할 뿐 프로세스에 치명적이지 않습니다.
    """


class SignalingError(GeomeshError):
    """라우팅할 수 없는 시그널링 메시지.

    코디네이터는 이 오류를 로그로만 남기고 발신자에게 전달하지 않습니다.
    """


class MediaAcquisitionError(GeomeshError):
    """로컬 카메라/마이크를 사용할 수 없거나 권한이 거부된 경우."""


class NegotiationError(GeomeshError):
    """피어 링크 협상 실패 (ICE 실패 재발 또는 타임아웃)."""

    def __init__(self, remote_id: str, reason: str):
        super().__init__(f"{remote_id}: {reason}")
        self.remote_id = remote_id
        self.reason = reason
