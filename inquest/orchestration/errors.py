"""Exception types raised inside the orchestration engine.

None of these escape ``OrchestrationEngine.run``; they are raised by the
components and handled at the engine boundary.
"""


class InquestError(Exception):
    """Base class for engine errors."""


class OracleError(InquestError):
    """The decision oracle could not produce a usable decision."""


class MalformedDecisionError(OracleError):
    """The oracle replied, but the reply is not a valid decision."""


class SessionFinalizedError(InquestError):
    """A mutation was attempted on a finalized session log."""

    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} is finalized and read-only")
        self.session_id = session_id


class UnknownCapabilityError(InquestError):
    """No tool or agent is registered under the requested name."""

    def __init__(self, kind: str, name: str):
        super().__init__(f"Unknown {kind}: {name}")
        self.kind = kind
        self.name = name
