"""Error taxonomy for the conversation pipeline.

Every error carries two texts: ``user_message`` is safe to show in the chat,
``detail`` is for logs and the audit trail only.
"""


class PipelineError(Exception):
    default_user_message = "Something went wrong. Please try again."

    def __init__(self, detail: str = "", user_message: str | None = None):
        super().__init__(detail or self.default_user_message)
        self.detail = detail
        self.user_message = user_message or self.default_user_message


class ValidationError(PipelineError):
    """Bad tool input. Recovered locally as a failed tool result."""

    default_user_message = "That request is missing something I need."


class SecurityRejection(PipelineError):
    """Injection or moderation verdict that stops the turn."""

    default_user_message = "This message can't be processed because it violates our usage policies."

    def __init__(self, detail: str = "", user_message: str | None = None, violation_type: str = "other"):
        super().__init__(detail, user_message)
        self.violation_type = violation_type


class ResolutionFailure(PipelineError):
    """A list or item reference did not match anything the user can access."""

    default_user_message = "I couldn't find that list."


class UpstreamFailure(PipelineError):
    """The language model or moderation service is unreachable or erroring."""

    default_user_message = "I'm having trouble reaching the assistant right now. Please try again."


class InvariantViolation(PipelineError):
    """Duplicate position, cyclic parent chain, illegal state transition."""

    default_user_message = UpstreamFailure.default_user_message


class ConversationNotFound(PipelineError):
    default_user_message = "Conversation not found."


class ConversationClosed(PipelineError):
    """Archived or deleted conversations accept no new messages."""

    default_user_message = "This conversation is archived. Start a new conversation to continue."
