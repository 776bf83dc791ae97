"""
Error taxonomy for the voice session orchestrator.

Each error carries a ``kind`` that is forwarded to the UI as
``ErrorSignal.kind`` so the caller can pick the right remediation
(grant a permission, retry a connect, reconnect).
"""


class VoiceSessionError(Exception):
    """Base class for all orchestrator errors."""
    kind = "session"


class CapabilityError(VoiceSessionError):
    """Media device denied or platform unsupported. Connect is aborted."""
    kind = "capability"


class MediaPermissionError(CapabilityError):
    """The user or platform denied access to the capture device."""


class UnsupportedPlatformError(CapabilityError):
    """No usable audio capture or playback backend on this platform."""


class HandshakeError(VoiceSessionError):
    """Credential issuance or session negotiation failed."""
    kind = "handshake"


class CredentialError(HandshakeError):
    """The credential endpoint refused or failed to issue a credential."""


class NegotiationError(HandshakeError):
    """The remote service did not complete the session handshake."""


class TransportError(VoiceSessionError):
    """The control channel failed after the session was connected."""
    kind = "transport"


class ProtocolDecodeError(VoiceSessionError):
    """An inbound message could not be parsed at all."""
    kind = "protocol"


class ToolExecutionError(VoiceSessionError):
    """The Tool Execution Collaborator failed to run a tool."""
    kind = "tool"


class ToolArgumentError(ToolExecutionError):
    """Tool arguments were malformed or the tool is not registered."""
