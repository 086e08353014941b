class SimulationError(Exception):
    """Base class for errors raised by the simulation kernel."""

    code = "E000"


class ConfigError(SimulationError, ValueError):
    """Invalid run configuration, raised before a run starts."""

    code = "E003"


class CharacterDataError(SimulationError):
    """A character definition is missing or malformed."""

    code = "E002"


class SchedulingError(SimulationError, ValueError):
    code = "E004"


class MediatorError(SimulationError):
    code = "E004"

    def __init__(self, request_type: str, message: str):
        super().__init__(f"{request_type}: {message}")
        self.request_type = request_type


class NoHandlerError(MediatorError):
    pass


class RequestTimeoutError(MediatorError):
    code = "E005"


class RecordingError(SimulationError, ValueError):
    """A saved event recording cannot be read."""

    code = "E006"
