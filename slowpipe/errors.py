class SlowpipeError(Exception):
    pass


class PayloadError(SlowpipeError):
    """The response body material could not be constructed."""


class ConfigError(SlowpipeError, ValueError):
    pass


class PeerClosedError(SlowpipeError, BrokenPipeError):
    """Raised on a write after the peer has closed the connection."""


class WriteTimeoutError(SlowpipeError, TimeoutError):
    pass
