"""Error types raised by the analyzer core."""


class FlagAnalyzerError(Exception):
    """Base class for analyzer errors."""


class FlagNotFoundError(FlagAnalyzerError):
    def __init__(self, flag_id: str):
        super().__init__(f"Flag not found: {flag_id}")
        self.flag_id = flag_id


class AnomalyNotFoundError(FlagAnalyzerError):
    def __init__(self, anomaly_id: str):
        super().__init__(f"Anomaly not found: {anomaly_id}")
        self.anomaly_id = anomaly_id


class LLMUnavailableError(FlagAnalyzerError):
    """The language model call itself failed (service down, model error)."""


class FlagAlreadyExistsError(FlagAnalyzerError):
    def __init__(self, flag_id: str):
        super().__init__(f"Flag already exists: {flag_id}")
        self.flag_id = flag_id
