"""
SDP / ICE codec

Converts between the JSON shapes browsers put on the wire
(`RTCSessionDescriptionInit`, `RTCIceCandidateInit`) and aiortc objects.
"""
import json
from typing import Optional

from aiortc import RTCIceCandidate, RTCSessionDescription
from aiortc.sdp import candidate_from_sdp

from .exceptions import MalformedSignalError


def _load_object(data: str, what: str) -> dict:
    try:
        obj = json.loads(data)
    except (TypeError, ValueError) as e:
        raise MalformedSignalError(f"{what} is not valid JSON: {e}") from e
    if not isinstance(obj, dict):
        raise MalformedSignalError(f"{what} must be a JSON object, got {type(obj).__name__}")
    return obj


def serialize_description(description: RTCSessionDescription) -> str:
    return json.dumps({"type": description.type, "sdp": description.sdp})


def parse_description(data: str) -> RTCSessionDescription:
    obj = _load_object(data, "Session description")
    sdp = obj.get("sdp")
    desc_type = obj.get("type")
    if not isinstance(sdp, str) or not isinstance(desc_type, str):
        raise MalformedSignalError("Session description needs string 'type' and 'sdp'")
    try:
        return RTCSessionDescription(sdp=sdp, type=desc_type)
    except ValueError as e:
        raise MalformedSignalError(str(e)) from e


def parse_candidate(data: str) -> Optional[RTCIceCandidate]:
    """
    Decode a candidate signal.

    Returns None for the end-of-candidates marker (empty candidate string).
    """
    obj = _load_object(data, "ICE candidate")
    line = obj.get("candidate")
    if line is None or line == "":
        return None
    if not isinstance(line, str):
        raise MalformedSignalError("ICE candidate 'candidate' must be a string")

    if line.startswith("a="):
        line = line[2:]
    if line.startswith("candidate:"):
        line = line[len("candidate:"):]

    try:
        candidate = candidate_from_sdp(line)
    except (AssertionError, IndexError, ValueError) as e:
        raise MalformedSignalError(f"Unparseable ICE candidate {line!r}: {e}") from e

    candidate.sdpMid = obj.get("sdpMid")
    candidate.sdpMLineIndex = obj.get("sdpMLineIndex")
    return candidate
