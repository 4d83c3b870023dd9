"""
Prompt template resolution.

Templates are plain strings with `{name}` placeholders. Two placeholders are
filled by the resolver itself depending on whether images accompany the
request:

- `{imageReference}`: "& image" with images, "" without
- `{imageContext}`: "visible in the image" with images, "described in the prompt" without

Any failure (store error, missing template, missing variable) degrades to a
generic fallback template so generation can still proceed.
"""
import re
from typing import Any, Dict, Mapping, Optional, Protocol

from aicore.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_CHAT_TEMPLATE = "CHAT_GENERIC"
DEFAULT_SYSTEM_PROMPT = "You are a helpful AI assistant for developers."
DEFAULT_VOICE_SYSTEM_PROMPT = (
    "You are a helpful AI voice assistant. Provide conversational, clear "
    "responses optimized for voice interaction."
)

FALLBACK_TEMPLATE = (
    "{prompt} - Generate a detailed {template_id} description based on the "
    "provided information."
)

_PLACEHOLDER = re.compile(r"\{(\w+)\}")


class TemplateStore(Protocol):
    """Persistence collaborator that owns template records."""

    async def get_active_template(self, template_id: str) -> Optional[Dict[str, Any]]:
        """Return the active template record (with a `content` key) or None."""


class DictTemplateStore:
    """In-memory template store keyed by template id."""

    def __init__(self, templates: Optional[Mapping[str, str]] = None):
        self._templates: Dict[str, str] = dict(templates or {})

    def set_template(self, template_id: str, content: str) -> None:
        self._templates[template_id] = content

    async def get_active_template(self, template_id: str) -> Optional[Dict[str, Any]]:
        content = self._templates.get(template_id)
        if content is None:
            return None
        return {"name": template_id, "content": content}


def render(template: str, variables: Mapping[str, Any]) -> str:
    """
    Substitute `{name}` placeholders.

    Raises:
        KeyError: if a placeholder has no value in `variables`
    """
    def substitute(match: "re.Match[str]") -> str:
        return str(variables[match.group(1)])

    return _PLACEHOLDER.sub(substitute, template)


def image_variables(has_images: bool) -> Dict[str, str]:
    if has_images:
        return {"imageReference": "& image", "imageContext": "visible in the image"}
    return {"imageReference": "", "imageContext": "described in the prompt"}


class PromptTemplateResolver:
    """Turns a template id plus variables into a rendered prompt."""

    def __init__(self, store: Optional[TemplateStore] = None):
        self.store = store

    async def _lookup(self, template_id: str) -> Optional[str]:
        if self.store is None:
            return None
        template = await self.store.get_active_template(template_id)
        if template and template.get("content"):
            return template["content"]
        return None

    def _fallback(self, template_id: str, variables: Mapping[str, Any]) -> str:
        return FALLBACK_TEMPLATE.format(
            prompt=variables.get("prompt", ""),
            template_id=template_id,
        )

    async def resolve(
        self,
        template_id: str,
        has_images: bool,
        variables: Mapping[str, Any],
    ) -> str:
        """Render the active template for `template_id`, or the generic fallback."""
        try:
            template = await self._lookup(template_id)
        except Exception as e:
            logger.error(
                "template_lookup_failed",
                template_id=template_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return self._fallback(template_id, variables)

        if template is None:
            logger.warning("template_not_found", template_id=template_id)
            return self._fallback(template_id, variables)

        merged = {**image_variables(has_images), **variables}
        try:
            rendered = render(template, merged)
        except KeyError as e:
            logger.warning(
                "template_variable_missing",
                template_id=template_id,
                variable=e.args[0],
            )
            return self._fallback(template_id, variables)

        logger.info("template_resolved", template_id=template_id, has_images=has_images)
        return rendered

    async def system_prompt(
        self,
        template_id: str = DEFAULT_CHAT_TEMPLATE,
        default: str = DEFAULT_SYSTEM_PROMPT,
    ) -> str:
        """Resolve a chat/voice system prompt, falling back to `default`."""
        try:
            template = await self._lookup(template_id)
        except Exception as e:
            logger.error(
                "system_prompt_lookup_failed",
                template_id=template_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return default
        if template is None:
            logger.warning("system_prompt_template_not_found", template_id=template_id)
            return default
        return template
