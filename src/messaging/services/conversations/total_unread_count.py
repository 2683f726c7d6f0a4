from typing import Callable

ChangeCallback = Callable[[int], None]


class TotalUnreadCount:
    """
    Observable total number of unread messages of one user.
    Callbacks are called only when the value actually changes.
    """

    def __init__(self, value: int = 0):
        self._value = value
        self._callbacks: list[ChangeCallback] = []

    @property
    def value(self) -> int:
        return self._value

    def on_change(self, callback: ChangeCallback) -> Callable[[], None]:
        """
        Register callback. Returns function that unregisters it.
        """
        self._callbacks.append(callback)

        def unregister():
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unregister

    def set(self, value: int) -> bool:
        if value < 0:
            raise ValueError(f"Unread count can't be negative: {value}")
        if value == self._value:
            return False
        self._value = value
        for callback in list(self._callbacks):
            callback(value)
        return True
