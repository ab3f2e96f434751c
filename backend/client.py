"""헤드리스 세션 클라이언트.

aiortc로 코디네이터에 접속해 룸에 참여하고, 같은 룸의 다른 참가자와 WebRTC
메시 연결을 맺습니다. 화면 표시는 로그로 대신합니다.

Usage:
    python client.py --server ws://localhost:3000/ws --room meeting-1 --media clip.mp4
    python client.py --server ws://localhost:3000/ws --room meeting-1 --lat 37.5665 --lng 126.978
"""
import argparse
import asyncio
import logging

from geomesh.peer import PlayerMediaSource, SessionClient, SignalingChannel
from geomesh.shared.errors import ConnectivityError, MediaAcquisitionError

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)


async def run_client(server: str, room: str, media: str = None, media_format: str = None,
                     lat: float = None, lng: float = None):
    """코디네이터 연결이 끊길 때까지 세션을 실행합니다."""
    media_source = PlayerMediaSource(media, format=media_format) if media else None

    async with SignalingChannel(server) as channel:
        session = SessionClient(channel, media_source=media_source)

        # 입장 전에 미디어를 준비하면 room-state 수신 시 바로 offer
        if media_source is not None:
            try:
                await session.start_media()
            except MediaAcquisitionError as e:
                logger.error(f"미디어 획득 실패, 수신 전용으로 계속: {e}")

        receiver = asyncio.create_task(session.run())
        try:
            # 위치 전송에는 connected로 받은 로컬 ID가 필요
            connected = asyncio.create_task(session.connected.wait())
            await asyncio.wait({receiver, connected}, return_when=asyncio.FIRST_COMPLETED)
            connected.cancel()

            await session.join_room(room)
            if lat is not None and lng is not None:
                await session.update_location(lat, lng)
            await receiver
        except ConnectivityError as e:
            logger.error(f"코디네이터 연결 오류: {e}")
        finally:
            receiver.cancel()
            await asyncio.gather(receiver, return_exceptions=True)
            await session.close()


def main():
    parser = argparse.ArgumentParser(description="Headless geomesh session client")
    parser.add_argument("--server", default="ws://localhost:3000/ws", help="Coordinator WebSocket URL")
    parser.add_argument("--room", required=True, help="Room name to join")
    parser.add_argument("--media", help="Media file or device to publish")
    parser.add_argument("--format", dest="media_format", help="ffmpeg input format (e.g. v4l2)")
    parser.add_argument("--lat", type=float, help="Initial latitude")
    parser.add_argument("--lng", type=float, help="Initial longitude")
    args = parser.parse_args()

    try:
        asyncio.run(run_client(args.server, args.room, args.media, args.media_format, args.lat, args.lng))
    except KeyboardInterrupt:
        logger.info("클라이언트 종료")


if __name__ == "__main__":
    main()
