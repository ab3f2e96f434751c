"""피어 링크 상태 머신 단위 테스트

- 생성: 자기 자신과의 링크 거부, 로컬 트랙 부착
- offer: 한 번만 전송, AWAITING_ANSWER 전이
- candidate: 원격 디스크립션 전 버퍼링 후 순서대로 적용, 실패 candidate 건너뜀
- answer: 상태와 무관하게 적용 (허용), 거부되어도 링크 유지
- glare: polite 쪽 롤백, impolite 쪽 무시
- 타임아웃 / ICE 실패: FAILED
- close: 멱등
"""

import asyncio
import logging

import pytest

from geomesh.peer.peer_link import LinkState, PeerLink


def _candidate(value: str) -> dict:
    return {"type": "candidate", "candidate": {"candidate": value, "sdpMid": "0", "sdpMLineIndex": 0}}


def _make_link(transport_factory, signal_recorder, local_id="peer-a", remote_id="peer-b", **kwargs):
    kwargs.setdefault("timeout", None)
    return PeerLink(local_id, remote_id, transport_factory, signal_recorder, **kwargs)


# ===== 생성 =====


@pytest.mark.asyncio
async def test_link_to_self_is_rejected(transport_factory, signal_recorder):
    with pytest.raises(ValueError):
        PeerLink("peer-a", "peer-a", transport_factory, signal_recorder)

    assert transport_factory.created == []


@pytest.mark.asyncio
async def test_local_tracks_attached_and_politeness(transport_factory, signal_recorder):
    link = _make_link(transport_factory, signal_recorder, local_stream=["audio", "video"])

    assert transport_factory.created[0].local_tracks == ["audio", "video"]
    assert link.polite is True  # "peer-a" < "peer-b"
    assert link.state is LinkState.IDLE

    await link.close()


# ===== offer =====


@pytest.mark.asyncio
async def test_offer_sent_once(transport_factory, signal_recorder):
    """offer는 링크당 한 번만 요청됨"""
    link = _make_link(transport_factory, signal_recorder)

    assert link.request_offer() is True
    assert link.request_offer() is False
    await link.wait_idle()

    assert signal_recorder.sent == [("peer-b", {"type": "offer", "sdp": "offer-sdp-t0"})]
    assert link.state is LinkState.AWAITING_ANSWER
    assert link.offer_sent

    await link.close()


@pytest.mark.asyncio
async def test_answer_completes_offer(transport_factory, signal_recorder):
    link = _make_link(transport_factory, signal_recorder)
    link.request_offer()
    link.deliver({"type": "answer", "sdp": "remote-answer"})
    await link.wait_idle()

    transport = transport_factory.created[0]
    assert transport.events == [("local", "offer"), ("remote", "answer")]

    await transport.emit_connection_state("connected")
    assert link.state is LinkState.CONNECTED

    await link.close()


# ===== candidate 버퍼링 =====


@pytest.mark.asyncio
async def test_early_candidates_flushed_in_order(transport_factory, signal_recorder):
    """원격 디스크립션 전에 도착한 candidate는 순서대로 적용되고 유실 없음"""
    link = _make_link(transport_factory, signal_recorder)

    for value in ("c1", "c2", "c3"):
        link.deliver(_candidate(value))
    await link.wait_idle()
    assert link.pending_candidates == 3

    link.deliver({"type": "offer", "sdp": "remote-offer"})
    link.deliver(_candidate("c4"))
    await link.wait_idle()

    transport = transport_factory.created[0]
    assert transport.events[:4] == [
        ("remote", "offer"),
        ("candidate", "c1"),
        ("candidate", "c2"),
        ("candidate", "c3"),
    ]
    assert transport.candidates == ["c1", "c2", "c3", "c4"]
    assert link.pending_candidates == 0
    assert signal_recorder.sent == [("peer-b", {"type": "answer", "sdp": "answer-sdp-t0"})]

    await link.close()


@pytest.mark.asyncio
async def test_failing_candidate_is_skipped(transport_factory, signal_recorder):
    link = _make_link(transport_factory, signal_recorder)
    transport = transport_factory.created[0]
    transport.failing_candidates.add("c2")

    for value in ("c1", "c2", "c3"):
        link.deliver(_candidate(value))
    link.deliver({"type": "offer", "sdp": "remote-offer"})
    await link.wait_idle()

    assert transport.candidates == ["c1", "c3"]
    assert link.state is LinkState.AWAITING_ANSWER

    await link.close()


@pytest.mark.asyncio
async def test_flat_candidate_format_accepted(transport_factory, signal_recorder):
    """candidate 문자열이 시그널 최상위에 있는 형식도 허용"""
    link = _make_link(transport_factory, signal_recorder)
    link.deliver({"type": "offer", "sdp": "remote-offer"})
    link.deliver({"type": "candidate", "candidate": "c1", "sdpMid": "0", "sdpMLineIndex": 0})
    await link.wait_idle()

    assert transport_factory.created[0].candidates == ["c1"]

    await link.close()


# ===== answer 허용 =====


@pytest.mark.asyncio
async def test_unexpected_answer_applied_with_warning(transport_factory, signal_recorder, caplog):
    """AWAITING_ANSWER가 아니어도 answer를 적용하고 경고만 남김"""
    link = _make_link(transport_factory, signal_recorder)

    with caplog.at_level(logging.WARNING, logger="geomesh.peer.peer_link"):
        link.deliver({"type": "answer", "sdp": "stray-answer"})
        await link.wait_idle()

    assert transport_factory.created[0].remote_description == {"type": "answer", "sdp": "stray-answer"}
    assert "예상치 않은 answer" in caplog.text

    await link.close()


@pytest.mark.asyncio
async def test_rejected_answer_keeps_link_alive(transport_factory, signal_recorder):
    link = _make_link(transport_factory, signal_recorder)
    link.request_offer()
    await link.wait_idle()
    transport_factory.created[0].reject_remote = True

    link.deliver({"type": "answer", "sdp": "broken"})
    link.deliver(_candidate("c1"))
    await link.wait_idle()

    assert link.state is LinkState.AWAITING_ANSWER
    assert link.pending_candidates == 1
    assert not transport_factory.created[0].closed

    await link.close()


# ===== glare =====


@pytest.mark.asyncio
async def test_glare_polite_side_rolls_back_and_answers(transport_factory, signal_recorder):
    """ID가 작은 쪽은 자신의 offer를 버리고 상대 offer에 answer"""
    link = _make_link(transport_factory, signal_recorder, local_id="peer-a", remote_id="peer-b")
    link.request_offer()
    await link.wait_idle()

    link.deliver({"type": "offer", "sdp": "remote-offer"})
    await link.wait_idle()

    first, second = transport_factory.created
    assert first.closed
    assert second.remote_description == {"type": "offer", "sdp": "remote-offer"}
    assert [signal["type"] for _, signal in signal_recorder.sent] == ["offer", "answer"]
    assert link.transport is second

    await link.close()


@pytest.mark.asyncio
async def test_glare_impolite_side_ignores_offer(transport_factory, signal_recorder):
    """ID가 큰 쪽은 수신 offer를 무시하고 자신의 answer를 기다림"""
    link = _make_link(transport_factory, signal_recorder, local_id="peer-b", remote_id="peer-a")
    link.request_offer()
    link.deliver({"type": "offer", "sdp": "remote-offer"})
    await link.wait_idle()

    assert len(transport_factory.created) == 1
    assert transport_factory.created[0].remote_description is None
    assert [signal["type"] for _, signal in signal_recorder.sent] == ["offer"]
    assert link.state is LinkState.AWAITING_ANSWER

    link.deliver({"type": "answer", "sdp": "remote-answer"})
    await link.wait_idle()
    assert transport_factory.created[0].remote_description["type"] == "answer"

    await link.close()


@pytest.mark.asyncio
async def test_queued_offer_skipped_after_remote_offer(transport_factory, signal_recorder):
    """이미 상대 offer에 answer했다면 대기 중이던 offer는 생략"""
    link = _make_link(transport_factory, signal_recorder)
    link.deliver({"type": "offer", "sdp": "remote-offer"})
    link.request_offer()
    await link.wait_idle()

    assert [signal["type"] for _, signal in signal_recorder.sent] == ["answer"]

    await link.close()


# ===== 타임아웃 / ICE 실패 =====


@pytest.mark.asyncio
async def test_negotiation_timeout_fails_link(transport_factory, signal_recorder):
    statuses = []

    async def on_status(remote_id, status):
        statuses.append((remote_id, status))

    link = _make_link(transport_factory, signal_recorder, timeout=0.01, on_status=on_status)
    link.request_offer()
    await asyncio.sleep(0.05)
    await link.wait_idle()

    assert link.state is LinkState.FAILED
    assert transport_factory.created[0].closed
    assert statuses == [("peer-b", "failed")]

    await link.close()
    assert link.state is LinkState.CLOSED


@pytest.mark.asyncio
async def test_connected_link_does_not_time_out(transport_factory, signal_recorder):
    link = _make_link(transport_factory, signal_recorder, timeout=0.02)
    link.request_offer()
    await link.wait_idle()

    await transport_factory.created[0].emit_connection_state("connected")
    await asyncio.sleep(0.05)

    assert link.state is LinkState.CONNECTED

    await link.close()


@pytest.mark.asyncio
async def test_ice_failure_without_restart_fails_link(transport_factory, signal_recorder):
    """ICE 재시작을 지원하지 않으면 바로 FAILED"""
    link = _make_link(transport_factory, signal_recorder)
    transport = transport_factory.created[0]
    link.request_offer()
    link.deliver({"type": "answer", "sdp": "remote-answer"})
    await link.wait_idle()
    await transport.emit_connection_state("connected")

    await transport.emit_ice_state("failed")
    await link.wait_idle()

    assert transport.restarts == 1
    assert link.state is LinkState.FAILED
    assert transport.closed

    await link.close()


@pytest.mark.asyncio
async def test_ice_restart_once_then_fail(transport_factory, signal_recorder):
    """ICE 재시작은 한 번만, 두 번째 실패는 FAILED"""
    link = _make_link(transport_factory, signal_recorder)
    transport = transport_factory.created[0]
    transport.restart_result = True
    link.request_offer()
    link.deliver({"type": "answer", "sdp": "remote-answer"})
    await link.wait_idle()

    await transport.emit_ice_state("failed")
    await link.wait_idle()

    assert transport.restarts == 1
    assert [signal["type"] for _, signal in signal_recorder.sent] == ["offer", "offer"]
    assert link.state is LinkState.AWAITING_ANSWER

    await transport.emit_ice_state("failed")
    await link.wait_idle()

    assert transport.restarts == 1
    assert link.state is LinkState.FAILED

    await link.close()


# ===== 콜백 =====


@pytest.mark.asyncio
async def test_local_candidate_and_remote_track_forwarded(transport_factory, signal_recorder):
    tracks = []

    async def on_remote_track(remote_id, track):
        tracks.append((remote_id, track))

    link = _make_link(transport_factory, signal_recorder, on_remote_track=on_remote_track)
    transport = transport_factory.created[0]

    await transport.emit_candidate({"candidate": "candidate:1 1 udp 1 10.0.0.1 9 typ host", "sdpMid": "0", "sdpMLineIndex": 0})
    await transport.emit_track("video-track")

    assert signal_recorder.sent[0][1]["type"] == "candidate"
    assert tracks == [("peer-b", "video-track")]

    await link.close()


# ===== close =====


@pytest.mark.asyncio
async def test_close_is_idempotent(transport_factory, signal_recorder):
    link = _make_link(transport_factory, signal_recorder, timeout=30)
    link.request_offer()
    link.deliver(_candidate("c1"))

    await link.close()
    await link.close()

    transport = transport_factory.created[0]
    assert transport.close_count == 1
    assert link.state is LinkState.CLOSED
    assert link.pending_candidates == 0

    link.deliver({"type": "answer", "sdp": "late"})
    assert link.request_offer() is False
    await link.wait_idle()
