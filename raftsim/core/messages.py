"""
Protocol messages exchanged between nodes, and their msgpack wire codec.

Nodes never call each other directly; every interaction is one of the
messages below, handed to a Transport. The codec lets the same messages
cross a process boundary unchanged.
"""

from dataclasses import dataclass
from typing import Any, Dict, Tuple, Union

import msgpack

from raftsim.core.log import LogEntry


@dataclass(frozen=True)
class RequestVote:
    """Sent by a candidate to every other member when it starts an election."""
    candidate_id: int
    term: int


@dataclass(frozen=True)
class VoteGranted:
    """Sent back to a candidate by a node that votes for it in `term`."""
    voter_id: int
    term: int


@dataclass(frozen=True)
class Heartbeat:
    """Periodic assertion of leadership for `term`."""
    leader_id: int
    term: int


@dataclass(frozen=True)
class ReplicateEntries:
    """Carries the leader's full log to a follower."""
    leader_id: int
    term: int
    entries: Tuple[LogEntry, ...] = ()


Message = Union[RequestVote, VoteGranted, Heartbeat, ReplicateEntries]

MESSAGE_TYPES = {
    'request_vote': RequestVote,
    'vote_granted': VoteGranted,
    'heartbeat': Heartbeat,
    'replicate_entries': ReplicateEntries,
}

_TYPE_NAMES = {cls: name for name, cls in MESSAGE_TYPES.items()}


def message_to_dict(message: Message) -> Dict[str, Any]:
    """
    Build the {'type', 'payload'} envelope for a message.

    Args:
        message: The message to convert.

    Returns:
        The envelope dictionary.

    Raises:
        ValueError: If the object is not a protocol message.
    """
    name = _TYPE_NAMES.get(type(message))
    if name is None:
        raise ValueError(f"Not a protocol message: {message!r}")

    if isinstance(message, RequestVote):
        payload = {'candidate_id': message.candidate_id, 'term': message.term}
    elif isinstance(message, VoteGranted):
        payload = {'voter_id': message.voter_id, 'term': message.term}
    elif isinstance(message, Heartbeat):
        payload = {'leader_id': message.leader_id, 'term': message.term}
    else:
        payload = {
            'leader_id': message.leader_id,
            'term': message.term,
            'entries': [entry.to_dict() for entry in message.entries],
        }

    return {'type': name, 'payload': payload}


def message_from_dict(data: Dict[str, Any]) -> Message:
    """
    Rebuild a message from its envelope.

    Raises:
        ValueError: If the envelope is malformed or the type is unknown.
    """
    if not isinstance(data, dict):
        raise ValueError(f"Message envelope must be a map, got {type(data).__name__}")

    message_type = data.get('type')
    payload = data.get('payload', {})
    cls = MESSAGE_TYPES.get(message_type)
    if cls is None:
        raise ValueError(f"Unknown message type: {message_type}")

    try:
        if cls is ReplicateEntries:
            return ReplicateEntries(
                leader_id=payload['leader_id'],
                term=payload['term'],
                entries=tuple(LogEntry.from_dict(e) for e in payload.get('entries', [])),
            )
        return cls(**payload)
    except (KeyError, TypeError) as e:
        raise ValueError(f"Malformed {message_type} payload {payload!r}: {e}") from e


def encode_message(message: Message) -> bytes:
    """
    Encode a message for the wire.
    """
    return msgpack.packb(message_to_dict(message), use_bin_type=True)


def decode_message(data: bytes) -> Message:
    """
    Decode a message produced by encode_message().

    Raises:
        ValueError: If the bytes cannot be decoded into a protocol message.
    """
    try:
        envelope = msgpack.unpackb(data, raw=False)
    except (ValueError, msgpack.exceptions.UnpackException) as e:
        raise ValueError(f"Undecodable message: {e}") from e
    return message_from_dict(envelope)
