"""Natural-language to workflow draft generation using Claude.

The generator asks the model for a structured intent (goal, triggers,
actions, audience, expected impact, confidence) and converts it into a
``DraftWorkflow``. The draft is untrusted: nothing here validates graph
structure, that is the draft importer's job.
"""

import logging
from typing import Any

import anthropic
from pydantic import BaseModel, ValidationError
from pydantic import Field as PydanticField

from trackflow.errors import DraftGenerationError
from trackflow.llm.client import LLMClient, get_client
from trackflow.models.draft import DraftConnection, DraftNode, DraftWorkflow, GenerationResult
from trackflow.models.template import NodeKind, NodeTemplate
from trackflow.models.workflow import (
    DEFAULT_INPUT_HANDLE,
    DEFAULT_OUTPUT_HANDLE,
    Position,
    new_connection_id,
    new_node_id,
)
from trackflow.services.template_catalog import TemplateCatalog, get_template_catalog

logger = logging.getLogger(__name__)

TRIGGER_ORIGIN = Position(x=400, y=50)
ACTION_ORIGIN = Position(x=400, y=250)
ROW_SPACING = 150


SYSTEM_PROMPT_TEMPLATE = """You are a website personalization expert. Extract a structured workflow
intent from the user's description.

A workflow starts with exactly ONE trigger (what the visitor does) followed by
one or more actions or conditions (what the page does in response).

## Available Triggers
{triggers}

## Available Actions and Conditions
{operations}

## Output Format

Return ONLY a JSON object with this exact structure:
```json
{{
  "goal": "Short name for the workflow",
  "triggers": [
    {{"type": "trigger-id", "conditions": {{"configKey": "value"}}, "description": "What this trigger detects"}}
  ],
  "actions": [
    {{"type": "action-id", "config": {{"configKey": "value"}}, "description": "What this action does"}}
  ],
  "targetAudience": "Who this workflow targets",
  "expectedImpact": "Expected business outcome",
  "confidence": 0.85
}}
```

Rules:
- Use the ids listed above for "type"
- Use the config keys listed for each template
- "confidence" is a number between 0 and 1
"""


class IntentTrigger(BaseModel):
    type: str
    conditions: dict[str, Any] = PydanticField(default_factory=dict)
    description: str = ""


class IntentAction(BaseModel):
    type: str
    config: dict[str, Any] = PydanticField(default_factory=dict)
    description: str = ""


class WorkflowIntent(BaseModel):
    """Structured intent returned by the model."""

    goal: str
    triggers: list[IntentTrigger] = PydanticField(default_factory=list)
    actions: list[IntentAction] = PydanticField(default_factory=list)
    target_audience: str = PydanticField(default="", alias="targetAudience")
    expected_impact: str = PydanticField(default="", alias="expectedImpact")
    confidence: float

    model_config = {"populate_by_name": True}


def _format_template(template: NodeTemplate) -> str:
    keys = ", ".join(field.key for field in template.config_fields)
    line = f"- {template.id}: {template.name} - {template.description}"
    if keys:
        line += f" (config: {keys})"
    return line


class WorkflowDraftGenerator:
    """Generates workflow drafts from natural-language prompts."""

    def __init__(
        self,
        llm_client: LLMClient | None = None,
        catalog: TemplateCatalog | None = None,
    ):
        self._llm_client = llm_client or get_client()
        self._catalog = catalog or get_template_catalog()

    def system_prompt(self) -> str:
        """System prompt listing the catalog's triggers and operations."""
        return SYSTEM_PROMPT_TEMPLATE.format(
            triggers="\n".join(_format_template(t) for t in self._catalog.triggers()),
            operations="\n".join(_format_template(t) for t in self._catalog.operations()),
        )

    async def generate(self, prompt: str) -> GenerationResult:
        """Generate a draft workflow from a prompt.

        Raises:
            DraftGenerationError: The model call failed or returned an
                unusable intent.
        """
        if not prompt.strip():
            raise DraftGenerationError("Prompt must not be empty")

        logger.info(f"Generating workflow draft for prompt: {prompt[:100]}")
        try:
            raw = await self._llm_client.generate_json(prompt, system=self.system_prompt())
        except ValueError as e:
            raise DraftGenerationError(f"Model returned invalid JSON: {e}") from e
        except anthropic.APIError as e:
            raise DraftGenerationError(f"Model call failed: {e}", retriable=True) from e

        try:
            intent = WorkflowIntent.model_validate(raw)
        except ValidationError as e:
            raise DraftGenerationError(f"Model returned an unusable intent: {e}") from e

        result = self.build_draft(intent)
        logger.info(
            f"Generated draft '{result.workflow.name}' with {len(result.workflow.nodes)} node(s), "
            f"confidence {result.confidence:.2f}"
        )
        return result

    def build_draft(self, intent: WorkflowIntent) -> GenerationResult:
        """Convert an intent into a draft.

        Triggers come first; every action is connected from the first
        trigger. Types the catalog knows are mapped to their template's
        name, type and metadata; unknown types are passed through as-is.
        """
        nodes: list[DraftNode] = []
        connections: list[DraftConnection] = []

        for index, trigger in enumerate(intent.triggers):
            position = Position(x=TRIGGER_ORIGIN.x, y=TRIGGER_ORIGIN.y + index * ROW_SPACING)
            nodes.append(
                self._draft_node(trigger.type, NodeKind.TRIGGER, trigger.conditions, trigger.description, position)
            )

        first_trigger = nodes[0] if nodes else None
        for index, action in enumerate(intent.actions):
            position = Position(x=ACTION_ORIGIN.x, y=ACTION_ORIGIN.y + index * ROW_SPACING)
            node = self._draft_node(action.type, NodeKind.ACTION, action.config, action.description, position)
            nodes.append(node)

            if first_trigger is not None:
                connections.append(
                    DraftConnection(
                        id=new_connection_id(),
                        source_node_id=first_trigger.id,
                        target_node_id=node.id,
                        source_handle=DEFAULT_OUTPUT_HANDLE,
                        target_handle=DEFAULT_INPUT_HANDLE,
                    )
                )

        description = intent.expected_impact
        if intent.target_audience:
            description = f"{description} - Targets: {intent.target_audience}"

        draft = DraftWorkflow(
            name=intent.goal,
            description=description,
            nodes=nodes,
            connections=connections,
        )
        return GenerationResult(
            workflow=draft,
            confidence=intent.confidence,
            intent=intent.model_dump(by_alias=True),
        )

    def _draft_node(
        self,
        type_id: str,
        default_kind: NodeKind,
        config: dict[str, Any],
        description: str,
        position: Position,
    ) -> DraftNode:
        template = self._catalog.get(type_id)
        if template is None:
            logger.warning(f"Model referenced unknown template '{type_id}'")
            return DraftNode(
                id=new_node_id(),
                type=default_kind,
                name=type_id,
                description=description or None,
                position=position,
                config=config,
            )

        # Actions may legitimately resolve to condition templates
        kind = template.type if default_kind != NodeKind.TRIGGER else NodeKind.TRIGGER
        return DraftNode(
            id=new_node_id(),
            type=kind,
            name=template.name,
            category=template.category,
            description=description or template.description,
            icon=template.icon,
            position=position,
            config=config,
        )
