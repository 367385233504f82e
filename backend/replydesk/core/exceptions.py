class ReplyDeskError(Exception):
    """Base class for errors raised inside the reply pipeline."""


class EmbeddingError(ReplyDeskError):
    pass


class LLMResponseError(ReplyDeskError):
    """The model answered, but not in the shape that was asked for."""
