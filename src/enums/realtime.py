from enum import Enum


class _LenientEnum(str, Enum):
    """String enum whose ``from_string`` maps unrecognized values to ``UNKNOWN``."""

    def __str__(self) -> str:
        return self.value

    @classmethod
    def from_string(cls, value):
        for member in cls:
            if member.value == value:
                return member
        return cls.UNKNOWN


class ClientCommandKind(_LenientEnum):
    """Commands a browser client may send over ``/ws/realtime``."""

    START_SESSION = "start_session"
    AUDIO = "audio"
    COMMIT_AUDIO = "commit_audio"
    CANCEL = "cancel"
    TEXT = "text"
    END_SESSION = "end_session"
    PING = "ping"
    PONG = "pong"  # reply to the liveness heartbeat
    UNKNOWN = "__unknown__"


class UpstreamEventKind(_LenientEnum):
    """Server events of the upstream realtime voice service that the relay handles."""

    SESSION_CREATED = "session.created"
    SESSION_UPDATED = "session.updated"
    SPEECH_STARTED = "input_audio_buffer.speech_started"
    SPEECH_STOPPED = "input_audio_buffer.speech_stopped"
    INPUT_TRANSCRIPT_COMPLETED = (
        "conversation.item.input_audio_transcription.completed"
    )
    AUDIO_DELTA = "response.audio.delta"
    AUDIO_TRANSCRIPT_DONE = "response.audio_transcript.done"
    TOOL_CALL_ARGUMENTS_DONE = "response.function_call_arguments.done"
    RESPONSE_DONE = "response.done"
    RATE_LIMITS_UPDATED = "rate_limits.updated"
    ERROR = "error"
    UNKNOWN = "__unknown__"


class RelayState(str, Enum):
    """Lifecycle of one relay session."""

    CONNECTED = "connected"
    STARTING = "starting"
    ACTIVE = "active"
    ENDING = "ending"
    CLOSED = "closed"

    def __str__(self) -> str:
        return self.value


class ConnectionRole(_LenientEnum):
    CUSTOMER = "customer"
    CHEF = "chef"
    UNKNOWN = "__unknown__"
