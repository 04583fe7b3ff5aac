class WorldInfoError(Exception):
    """Base error raised by the activation engine"""


class TokenizerError(WorldInfoError):
    """The injected tokenizer failed or returned an unusable count"""

    def __init__(self, message: str, text_length: int = 0):
        super().__init__(message)
        self.text_length = text_length
