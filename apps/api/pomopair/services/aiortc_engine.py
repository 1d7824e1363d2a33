"""Media engine backed by an aiortc peer connection.

aiortc gathers candidates inside ``setLocalDescription`` instead of trickling them, so
once a local description is applied its candidate lines are published one by one as
``LocalCandidateDiscovered`` events. Remote candidates go through ``addIceCandidate``.
"""
from __future__ import annotations

import logging
from typing import Iterable, Iterator, List, Sequence

from aiortc import (
    MediaStreamTrack,
    RTCConfiguration,
    RTCIceServer,
    RTCPeerConnection,
    RTCRtpSender,
    RTCSessionDescription,
)
from aiortc.sdp import candidate_from_sdp

from ..core.config import settings
from ..schemas.signaling import IceCandidate, SdpType, SessionDescription
from .media import (
    ConnectionState,
    ConnectionStateChanged,
    LocalCandidateDiscovered,
    MediaEventBus,
    RemoteTrackAdded,
)

DATA_CHANNEL_LABEL = "timer"

logger = logging.getLogger(__name__)


def candidates_in_sdp(sdp: str) -> Iterator[IceCandidate]:
    """Yield every ``a=candidate`` line of an SDP with its media section position."""

    mline_index = -1
    mid = ""
    for line in sdp.splitlines():
        if line.startswith("m="):
            mline_index += 1
            mid = ""
        elif line.startswith("a=mid:"):
            mid = line[len("a=mid:"):].strip()
        elif line.startswith("a=candidate:") and mline_index >= 0:
            yield IceCandidate(candidate=line[2:].strip(), sdp_mline_index=mline_index, sdp_mid=mid)


class AiortcMediaEngine:
    """Adapt :class:`aiortc.RTCPeerConnection` to the media engine contract."""

    def __init__(
        self,
        ice_servers: Sequence[str] | None = None,
        tracks: Iterable[MediaStreamTrack] = (),
    ) -> None:
        urls = settings.ice_servers if ice_servers is None else list(ice_servers)
        configuration = RTCConfiguration(iceServers=[RTCIceServer(urls=url) for url in urls])
        self.events = MediaEventBus()
        self.pc = RTCPeerConnection(configuration=configuration)
        self._senders: List[tuple[RTCRtpSender, MediaStreamTrack]] = []
        for track in tracks:
            self._senders.append((self.pc.addTrack(track), track))
        if not self._senders:
            self.pc.createDataChannel(DATA_CHANNEL_LABEL)

        self.pc.on("track", self._on_track)
        self.pc.on("iceconnectionstatechange", self._on_ice_state)

    async def create_offer(self) -> SessionDescription:
        offer = await self.pc.createOffer()
        return SessionDescription(type=SdpType.OFFER, sdp=offer.sdp)

    async def create_answer(self) -> SessionDescription:
        answer = await self.pc.createAnswer()
        return SessionDescription(type=SdpType.ANSWER, sdp=answer.sdp)

    async def set_local_description(self, description: SessionDescription) -> None:
        await self.pc.setLocalDescription(RTCSessionDescription(sdp=description.sdp, type=description.type.value))
        for candidate in candidates_in_sdp(self.pc.localDescription.sdp):
            await self.events.publish(LocalCandidateDiscovered(candidate))

    async def set_remote_description(self, description: SessionDescription) -> None:
        await self.pc.setRemoteDescription(RTCSessionDescription(sdp=description.sdp, type=description.type.value))

    async def add_ice_candidate(self, candidate: IceCandidate) -> None:
        line = candidate.candidate
        if line.startswith("candidate:"):
            line = line[len("candidate:"):]
        ice_candidate = candidate_from_sdp(line)
        ice_candidate.sdpMid = candidate.sdp_mid
        ice_candidate.sdpMLineIndex = candidate.sdp_mline_index
        await self.pc.addIceCandidate(ice_candidate)

    def set_audio_enabled(self, enabled: bool) -> None:
        self._set_kind_enabled("audio", enabled)

    def set_video_enabled(self, enabled: bool) -> None:
        self._set_kind_enabled("video", enabled)

    async def close(self) -> None:
        await self.pc.close()

    def _set_kind_enabled(self, kind: str, enabled: bool) -> None:
        for sender, track in self._senders:
            if track.kind == kind:
                sender.replaceTrack(track if enabled else None)

    async def _on_track(self, track: MediaStreamTrack) -> None:
        logger.info("Remote %s track received", track.kind)
        await self.events.publish(RemoteTrackAdded(kind=track.kind, track=track))

    async def _on_ice_state(self) -> None:
        state = self.pc.iceConnectionState
        try:
            mapped = ConnectionState(state)
        except ValueError:
            logger.debug("Ignoring ICE state %s", state)
            return
        await self.events.publish(ConnectionStateChanged(mapped))
