import json
import logging
from pathlib import Path
from typing import List, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from blockurls.core import ConfigurationError, compile_rules

logger = logging.getLogger(__name__)

DEFAULT_STATUS_CODE = 403


class BlockUrlsConfig(BaseModel):
    """
    Options a host passes when it instantiates the middleware.

    Keys follow the host's camelCase naming (``statusCode``,
    ``allowLocalRequests`` ...); the snake_case field names are accepted too.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    regex: List[str] = Field(default_factory=list)
    exact_match: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("exact_match", "exactMatch"),
    )
    status_code: int = Field(DEFAULT_STATUS_CODE, alias="statusCode", ge=100, le=599)
    allow_local_requests: bool = Field(True, alias="allowLocalRequests")
    silent_start_up: bool = Field(True, alias="silentStartUp")

    @field_validator("regex")
    @classmethod
    def _regex_compiles(cls, patterns: List[str]) -> List[str]:
        try:
            compile_rules(patterns)
        except ConfigurationError as e:
            raise ValueError(str(e)) from e
        return patterns


def create_config(**overrides) -> BlockUrlsConfig:
    """Default configuration, with any overrides validated like host input."""
    try:
        return BlockUrlsConfig(**overrides)
    except ValidationError as e:
        raise ConfigurationError(str(e)) from e


def load_config(path: Union[str, Path]) -> BlockUrlsConfig:
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)

    if not isinstance(data, dict):
        raise ConfigurationError(f"{path}: expected a JSON object, got {type(data).__name__}")

    config = create_config(**data)
    logger.debug("Loaded block-regex-urls config from %s", path)
    return config
