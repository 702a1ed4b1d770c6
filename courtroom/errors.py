from __future__ import annotations


class ConfigurationError(RuntimeError):
    """Case or persona set up incorrectly (bad preset, duplicate id, ...)."""


class PersonaNotBoundError(ConfigurationError):
    def __init__(self, persona_id: int) -> None:
        super().__init__(f"Persona {persona_id} is not bound to an output channel")
        self.persona_id = persona_id


class ContentServiceError(RuntimeError):
    """The generative service failed or returned something unusable."""
