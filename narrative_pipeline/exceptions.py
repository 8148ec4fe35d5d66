"""Pipeline exceptions."""


class PipelineError(Exception):
    """Base class for pipeline errors."""


class ControlRecordNotFound(PipelineError):
    """No control record exists for the requested id."""

    def __init__(self, request_id):
        super().__init__(f"wf_assistant_automation_control: Record not found using id = {request_id}")
        self.request_id = request_id


class StaleControlRecordError(PipelineError):
    """A conditional update matched no row because the version moved on."""

    def __init__(self, request_id, expected_version: int):
        super().__init__(
            f"Control record {request_id} changed concurrently (expected version {expected_version})"
        )
        self.request_id = request_id
        self.expected_version = expected_version


class UnknownAssistantError(PipelineError):
    """The assistant family has no merge configuration."""

    def __init__(self, assistant_name: str):
        super().__init__(f"Unrecognized assistant: {assistant_name}")
        self.assistant_name = assistant_name


class ConfigurationMissingError(PipelineError):
    """Required reference configuration could not be found."""
