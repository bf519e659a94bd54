"""Ask Skill - forwards free-form questions to the configured LLM."""

from typing import Any, Dict

from core.skills.base import BaseSkill, CommandSpec, RoutingResult

SYSTEM_PROMPT = (
    "You are HQBot, a concise engineering assistant reached over chat. "
    "Answer briefly. Available bot commands:\n{docs}"
)


class AskSkill(BaseSkill):
    name = "ask"
    description = "Ask the AI assistant a question"
    priority = -10

    commands = [
        CommandSpec(r"ask\s+(.+)", "Ask the AI a question", "ask <question>"),
    ]

    async def execute(self, command: str, context: Dict[str, Any]) -> RoutingResult:
        match = self.matcher.first_match(command.strip())
        question = match.group(1).strip() if match else ""
        if not question:
            return self.error("Ask me something", suggestion="Usage: ask <question>")

        if self.ai is None:
            return self.error(
                "AI is not configured",
                suggestion="Set LLM_MODEL and the provider API key in .env",
            )

        docs = self.registry.generate_skill_docs() if self.registry is not None else ""
        try:
            answer = await self.ai.ask(question, system=SYSTEM_PROMPT.format(docs=docs))
        except Exception as e:
            self.log("error", f"LLM call failed: {e}")
            return self.error("The AI request failed", error=e, suggestion="Try again shortly")

        return self.success(answer or "_(no answer)_")


Skill = AskSkill
