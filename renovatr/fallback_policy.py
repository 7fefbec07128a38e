# renovatr/fallback_policy.py
import logging

from renovatr.base_utils import color_print
from renovatr.conversation import ConversationTurn

FALLBACK_MESSAGE = "Sorry, I couldn't get a response. Please try again."


class FallbackPolicy:
    """
    What the user sees when a cycle cannot produce a model reply.

    Invocation and output errors collapse into one assistant turn carrying a fixed retry
    message. There is no retry loop: the user resubmits. The cause is only logged.
    """

    def __init__(self, message: str = FALLBACK_MESSAGE):
        self.message = message

    def fallback_turn(self, error: Exception, entity_ref) -> ConversationTurn:
        color_print(
            f"Falling back for {entity_ref.key}: {type(error).__name__}: {error}",
            color="red",
            level=logging.WARNING,
        )
        return ConversationTurn.assistant(self.message)
