"""Persona sampling parameters and their resolution by hierarchical code."""

import re
from typing import Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from llm.src.errors import ConfigurationError

DEFAULT_KEY = "default"

_SEPARATOR = re.compile(r"[-.]")


class PersonaParameters(BaseModel):
    """Sampling for a persona's reply call and the size of its context."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    temperature: float = Field(ge=0.0, le=1.0)
    top_p: float = Field(ge=0.0, le=1.0, alias="topP")
    max_history_turns: int = Field(ge=1, alias="maxHistoryTurns")


class ParameterTable:
    """
    Parameters keyed by code prefix ("1", "1-3", "1-3-1", ...) plus "default".

    resolve() picks the longest prefix of a code that has an entry:
    for "1-3-1-2" it tries "1-3-1-2", "1-3-1", "1-3", "1", then "default".
    """

    def __init__(self, entries: Mapping[str, Union[PersonaParameters, dict]]):
        parsed: dict[str, PersonaParameters] = {}
        for key, value in entries.items():
            if isinstance(value, PersonaParameters):
                parsed[str(key)] = value
                continue
            try:
                parsed[str(key)] = PersonaParameters.model_validate(value)
            except ValidationError as e:
                raise ConfigurationError(f"Invalid persona parameters for {key!r}: {e}") from e

        if DEFAULT_KEY not in parsed:
            raise ConfigurationError(f'Persona parameter table needs a "{DEFAULT_KEY}" entry')
        self._entries = parsed

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    @property
    def default(self) -> PersonaParameters:
        return self._entries[DEFAULT_KEY]

    def resolve(self, code: Optional[str]) -> PersonaParameters:
        if not code:
            return self.default

        # Cut points are the separator positions, longest prefix first
        cuts = [m.start() for m in _SEPARATOR.finditer(code)]
        for end in [len(code)] + list(reversed(cuts)):
            prefix = code[:end]
            if prefix and prefix in self._entries:
                return self._entries[prefix]
        return self.default
