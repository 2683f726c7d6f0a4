from dataclasses import dataclass


@dataclass()
class MessagingException(Exception):
    detail: str
    error_code: str = "MESSAGING_GENERAL_ERROR"

    def __str__(self):
        return f"Error {self.error_code}: {self.detail}"


@dataclass()
class ValidationFailed(MessagingException):
    error_code: str = "VALIDATION_FAILED"


@dataclass()
class NotAuthorized(MessagingException):
    error_code: str = "NOT_AUTHORIZED"


@dataclass()
class TransientIOFailure(MessagingException):
    error_code: str = "TRANSIENT_IO_FAILURE"


@dataclass()
class ChannelDropped(MessagingException):
    error_code: str = "CHANNEL_DROPPED"
