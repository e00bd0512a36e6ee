"""Pydantic models for node templates (the catalog's blueprints)."""

from enum import Enum
from typing import Any

from pydantic import BaseModel
from pydantic import Field as PydanticField


class NodeKind(str, Enum):
    """The role a node plays in a workflow graph."""

    TRIGGER = "trigger"
    ACTION = "action"
    CONDITION = "condition"


class FieldType(str, Enum):
    """Supported editor field types for node configuration."""

    TEXT = "text"
    NUMBER = "number"
    BOOLEAN = "boolean"
    SELECT = "select"
    TEXTAREA = "textarea"
    URL = "url"
    CSS_SELECTOR = "css-selector"


class FieldOption(BaseModel):
    """A single choice of a select field."""

    value: str
    label: str

    model_config = {"frozen": True}


class ConfigField(BaseModel):
    """Schema of one configurable field of a node template."""

    key: str
    label: str
    type: FieldType
    required: bool = False
    options: list[FieldOption] | None = None  # For select fields
    default: Any | None = None
    placeholder: str | None = None
    description: str | None = None

    model_config = {"frozen": True}

    @property
    def option_values(self) -> list[str]:
        """Allowed raw values for a select field."""
        return [option.value for option in self.options or []]


class NodeTemplate(BaseModel):
    """An immutable blueprint for a trigger, action or condition node.

    Owned by the template catalog. Instances copy ``default_config`` by
    value when they are created, so nothing an editor does to a node can
    leak back into the template.
    """

    id: str
    type: NodeKind
    category: str
    name: str
    description: str = ""
    icon: str = ""
    default_config: dict[str, Any] = PydanticField(default_factory=dict, alias="defaultConfig")
    config_fields: list[ConfigField] = PydanticField(default_factory=list, alias="configFields")

    model_config = {"populate_by_name": True, "frozen": True}

    @property
    def is_trigger(self) -> bool:
        return self.type == NodeKind.TRIGGER

    def get_field(self, key: str) -> ConfigField | None:
        """Find a field schema by key."""
        for field in self.config_fields:
            if field.key == key:
                return field
        return None
