"""Peer-to-peer voice mesh.

One RTCPeerConnection per remote player. Negotiation messages travel over
the session WebSocket as ``webrtc:signal`` envelopes::

    {"type": "offer" | "answer", "sdp": "..."}
    {"type": "ice", "candidate": {"candidate": "...", "sdpMid": "0", "sdpMLineIndex": 0}}

Every peer has its own lifecycle; a failure while talking to one peer is
logged and only that peer is torn down.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Union

from aiortc import (
    RTCConfiguration,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.contrib.media import MediaBlackhole, MediaRelay
from aiortc.sdp import candidate_from_sdp, candidate_to_sdp

from client.errors import MediaAcquisitionError
from client.protocol import SignalType
from voice.tracks import GatedAudioTrack, open_microphone

logger = logging.getLogger(__name__)

SignalSender = Callable[[str, Dict[str, Any]], Union[None, Awaitable[None]]]

_TEARDOWN_STATES = ("disconnected", "failed")


def _log_sink_failure(peer_id: str, task: asyncio.Future):
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.warning("Audio sink for %s stopped: %s", peer_id, error)


@dataclass
class PeerLink:
    """Everything the mesh owns for one remote player."""
    peer_id: str
    pc: Any
    outbound: Optional[GatedAudioTrack] = None
    sink: Any = None
    sink_task: Optional[asyncio.Future] = None
    pending_candidates: List[Any] = field(default_factory=list)

    @property
    def state(self) -> str:
        return getattr(self.pc, "connectionState", "new")


def default_peer_factory(ice_servers: Iterable[str]) -> Callable[[], RTCPeerConnection]:
    servers = [RTCIceServer(urls=url) for url in ice_servers]

    def factory() -> RTCPeerConnection:
        return RTCPeerConnection(configuration=RTCConfiguration(iceServers=servers))

    return factory


class VoiceMesh:
    """Audio-only mesh of peer connections driven by relayed signals."""

    def __init__(
        self,
        send_signal: SignalSender,
        peer_factory: Optional[Callable[[], Any]] = None,
        media_factory: Optional[Callable[[], Any]] = None,
        sink_factory: Optional[Callable[[], Any]] = None,
        ice_servers: Iterable[str] = (),
    ):
        self._send_signal = send_signal
        self._peer_factory = peer_factory or default_peer_factory(ice_servers)
        self._media_factory = media_factory or open_microphone
        self._sink_factory = sink_factory or MediaBlackhole
        self._peers: Dict[str, PeerLink] = {}
        self._media = None
        self._relay: Optional[MediaRelay] = None
        self.transmitting = False

    @property
    def initialized(self) -> bool:
        return self._media is not None

    @property
    def peer_ids(self) -> List[str]:
        return list(self._peers)

    def get_peer(self, peer_id: str) -> Optional[PeerLink]:
        return self._peers.get(peer_id)

    async def _signal(self, target_id: str, signal: Dict[str, Any]):
        result = self._send_signal(target_id, signal)
        if inspect.isawaitable(result):
            await result

    # Local media
    async def initialize(self):
        """Acquire the microphone, muted, and attach it to existing peers.

        Raises:
            MediaAcquisitionError: capture is unavailable or was denied.
        """
        if self._media is not None:
            return
        try:
            media = self._media_factory()
            if inspect.isawaitable(media):
                media = await media
        except MediaAcquisitionError:
            raise
        except Exception as e:
            raise MediaAcquisitionError(f"Audio capture unavailable: {e}") from e
        if getattr(media, "audio", None) is None:
            raise MediaAcquisitionError("Audio capture produced no audio track")

        self._media = media
        self._relay = MediaRelay()
        self.transmitting = False

        for link in list(self._peers.values()):
            self._attach_local_track(link)
        logger.info("Voice initialized (muted)")

    def _attach_local_track(self, link: PeerLink):
        if self._media is None or link.outbound is not None:
            return
        track = GatedAudioTrack(self._relay.subscribe(self._media.audio), enabled=self.transmitting)
        link.pc.addTrack(track)
        link.outbound = track

    def set_transmitting(self, enabled: bool):
        """Open or close the microphone gate on every outbound track."""
        self.transmitting = bool(enabled)
        for link in self._peers.values():
            if link.outbound is not None:
                link.outbound.enabled = self.transmitting
        logger.debug("Transmitting: %s", self.transmitting)

    # Peers
    def ensure_peer_connection(self, peer_id: str) -> PeerLink:
        """Return the link for ``peer_id``, creating it on first use."""
        link = self._peers.get(peer_id)
        if link is not None:
            return link

        pc = self._peer_factory()
        link = PeerLink(peer_id=peer_id, pc=pc)
        self._peers[peer_id] = link
        self._attach_local_track(link)

        @pc.on("icecandidate")
        async def on_icecandidate(candidate):
            if candidate is None:
                return
            await self._signal(peer_id, {
                "type": SignalType.ICE.value,
                "candidate": {
                    "candidate": "candidate:" + candidate_to_sdp(candidate),
                    "sdpMid": candidate.sdpMid,
                    "sdpMLineIndex": candidate.sdpMLineIndex,
                },
            })

        @pc.on("track")
        def on_track(track):
            if track.kind != "audio":
                return
            logger.info("Receiving audio from %s", peer_id)
            link.sink = self._sink_factory()
            link.sink.addTrack(track)
            link.sink_task = asyncio.ensure_future(link.sink.start())
            link.sink_task.add_done_callback(lambda task: _log_sink_failure(peer_id, task))

        @pc.on("connectionstatechange")
        async def on_connectionstatechange():
            state = pc.connectionState
            logger.debug("Peer %s connection state: %s", peer_id, state)
            if state in _TEARDOWN_STATES:
                await self.close_peer(peer_id)

        return link

    async def create_offer(self, peer_id: str) -> Optional[str]:
        """Start negotiation with ``peer_id``. Returns the offer SDP, or None on failure."""
        try:
            link = self.ensure_peer_connection(peer_id)
            offer = await link.pc.createOffer()
            await link.pc.setLocalDescription(offer)
            sdp = link.pc.localDescription.sdp
            await self._signal(peer_id, {"type": SignalType.OFFER.value, "sdp": sdp})
            return sdp
        except Exception:
            logger.exception("Offer to %s failed", peer_id)
            await self.close_peer(peer_id)
            return None

    async def handle_offer(self, peer_id: str, sdp: str) -> bool:
        """Answer a remote offer."""
        try:
            link = self.ensure_peer_connection(peer_id)
            await link.pc.setRemoteDescription(RTCSessionDescription(sdp=sdp, type="offer"))
            await self._flush_candidates(link)
            answer = await link.pc.createAnswer()
            await link.pc.setLocalDescription(answer)
            await self._signal(peer_id, {
                "type": SignalType.ANSWER.value,
                "sdp": link.pc.localDescription.sdp,
            })
            return True
        except Exception:
            logger.exception("Handling offer from %s failed", peer_id)
            await self.close_peer(peer_id)
            return False

    async def handle_answer(self, peer_id: str, sdp: str) -> bool:
        """Apply the answer to an offer we sent. Unknown peers are ignored."""
        link = self._peers.get(peer_id)
        if link is None:
            logger.debug("Answer from unknown peer %s ignored", peer_id)
            return False
        try:
            await link.pc.setRemoteDescription(RTCSessionDescription(sdp=sdp, type="answer"))
            await self._flush_candidates(link)
            return True
        except Exception:
            logger.exception("Handling answer from %s failed", peer_id)
            await self.close_peer(peer_id)
            return False

    async def handle_ice_candidate(self, peer_id: str, candidate: Dict[str, Any]) -> bool:
        """Add a remote ICE candidate, holding it until the remote description is set."""
        link = self._peers.get(peer_id)
        if link is None or not isinstance(candidate, dict):
            return False
        text = candidate.get("candidate") or ""
        if not text:
            # End of candidates
            return False
        try:
            parsed = candidate_from_sdp(text.split(":", 1)[1] if text.startswith("candidate:") else text)
            parsed.sdpMid = candidate.get("sdpMid")
            parsed.sdpMLineIndex = candidate.get("sdpMLineIndex")
        except (AssertionError, ValueError, IndexError) as e:
            # candidate_from_sdp asserts on short lines
            logger.warning("Bad ICE candidate from %s: %s", peer_id, e)
            return False

        if getattr(link.pc, "remoteDescription", None) is None:
            link.pending_candidates.append(parsed)
            return True
        try:
            await link.pc.addIceCandidate(parsed)
            return True
        except Exception:
            logger.exception("Adding ICE candidate from %s failed", peer_id)
            return False

    async def _flush_candidates(self, link: PeerLink):
        pending, link.pending_candidates = link.pending_candidates, []
        for parsed in pending:
            await link.pc.addIceCandidate(parsed)

    async def handle_signal(self, from_id: str, signal: Dict[str, Any]) -> bool:
        """Dispatch one relayed envelope by its ``type``."""
        kind = signal.get("type") if isinstance(signal, dict) else None
        if kind == SignalType.OFFER.value and signal.get("sdp"):
            return await self.handle_offer(from_id, signal["sdp"])
        if kind == SignalType.ANSWER.value and signal.get("sdp"):
            return await self.handle_answer(from_id, signal["sdp"])
        if kind == SignalType.ICE.value:
            return await self.handle_ice_candidate(from_id, signal.get("candidate"))
        logger.warning("Unknown signal from %s: %r", from_id, kind)
        return False

    async def connect_to_peers(self, peer_ids: Iterable[str]) -> Dict[str, bool]:
        """Offer to every listed peer concurrently. Returns peer id -> offer sent."""
        ids = [pid for pid in dict.fromkeys(peer_ids) if pid]
        results = await asyncio.gather(*(self.create_offer(pid) for pid in ids), return_exceptions=True)
        outcome = {}
        for pid, result in zip(ids, results):
            if isinstance(result, BaseException):
                logger.error("Offer to %s failed: %s", pid, result)
            outcome[pid] = isinstance(result, str)
        return outcome

    async def close_peer(self, peer_id: str):
        """Tear down one peer. Safe to call for unknown ids."""
        link = self._peers.pop(peer_id, None)
        if link is None:
            return
        if link.outbound is not None:
            link.outbound.stop()
        if link.sink_task is not None and not link.sink_task.done():
            link.sink_task.cancel()
            try:
                await link.sink_task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.debug("Sink for %s failed while starting: %s", peer_id, e)
        link.sink_task = None
        if link.sink is not None:
            try:
                await link.sink.stop()
            except Exception as e:
                logger.debug("Error stopping sink for %s: %s", peer_id, e)
        try:
            await link.pc.close()
        except Exception as e:
            logger.debug("Error closing peer %s: %s", peer_id, e)
        logger.info("Closed peer connection %s", peer_id)

    async def cleanup(self):
        """Close every peer and release the microphone."""
        for peer_id in list(self._peers):
            await self.close_peer(peer_id)
        if self._media is not None:
            self._media.audio.stop()
            self._media = None
        self._relay = None
        self.transmitting = False
        logger.info("Voice cleanup complete")
