from enum import Enum


class InboundEvent(str, Enum):
    OPEN_SESSIONS = "openSessions"
    NEW_MESSAGE = "newMessage"
    NEW_FILE = "newFile"
    AGENT_JOINED = "agentJoined"
    SESSION_ENDED = "sessionEnded"
    SESSION_WAITING = "sessionWaiting"


class OutboundEvent(str, Enum):
    START_SESSION = "startSession"
    JOIN_SESSION = "joinSession"
    SEND_MESSAGE = "sendMessage"
    SEND_FILE = "sendFile"
    END_SESSION = "endSession"
    LIST_OPEN_SESSIONS = "listOpenSessions"


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"
    DISCONNECTED = "disconnected"
