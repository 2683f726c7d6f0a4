from dataclasses import dataclass


@dataclass(frozen=True)
class ChatRepoException(Exception):
    detail: str = ""

    def __str__(self):
        return f"Error {self.__class__.__name__}: {self.detail}"


class ChatRepoRequestError(ChatRepoException):
    """
    Request can't be executed (constraint violation, missing related record)
    """


class ChatRepoDatabaseError(ChatRepoException):
    """
    Storage is unavailable or failed to execute the request
    """
