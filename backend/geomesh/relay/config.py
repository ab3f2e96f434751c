"""릴레이 서버 설정.

서버 바인딩 주소, 로그, CORS 관련 환경변수 기반 설정.
"""

import os
import logging
from pathlib import Path
from dataclasses import dataclass
from typing import Optional

# 환경변수 로드 (상위에서 이미 로드됨)
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

_env_path = Path(__file__).parent.parent.parent / "config" / ".env"
load_dotenv(_env_path)


def _parse_origins(value: Optional[str]) -> tuple:
    """쉼표로 구분된 origin 목록을 tuple로 변환."""
    if not value:
        return ("*",)
    return tuple(origin.strip() for origin in value.split(",") if origin.strip())


# ============================================================
# 서버 설정
# ============================================================

@dataclass(frozen=True)
class ServerConfig:
    """릴레이 서버 설정."""

    # 바인딩 주소
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "3000"))

    # 로그 레벨 / 파일 로그 디렉토리 (비어있으면 콘솔만)
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
    LOG_DIR: Optional[str] = os.getenv("LOG_DIR") or None

    # CORS 허용 origin (기본: 전체 허용, 로컬 개발용)
    CORS_ORIGINS: tuple = _parse_origins(os.getenv("CORS_ORIGINS"))


# ============================================================
# 싱글톤 인스턴스
# ============================================================

server_config = ServerConfig()

logger.debug(f"[Relay Config] .env 경로: {_env_path} (존재: {_env_path.exists()})")
