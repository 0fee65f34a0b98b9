"""Adapter for the agent CLI discovered via settings or PATH."""

from __future__ import annotations

import shutil
from pathlib import Path

from ..config import AgentSettings, settings
from ..errors import RunnerEnvironmentError
from ..schemas.scenario import PromptPlan


class AgentCliAdapter:
    """Resolves the agent executable and renders its command line."""

    CLI_ENV_VAR = "SCENARIO_AGENT__BINARY"

    def __init__(self, binary: str | None = None, agent: AgentSettings | None = None) -> None:
        self.agent = agent or settings.agent
        self.binary = binary
        self._resolved_cli: str | None = None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _resolve_cli(self) -> str:
        if self._resolved_cli:
            return self._resolved_cli
        requested = self.binary or self.agent.binary
        if requested:
            candidate = requested if Path(requested).is_file() else shutil.which(requested)
        else:
            candidate = shutil.which(self.agent.default_binary)
        if not candidate:
            name = requested or self.agent.default_binary
            raise RunnerEnvironmentError(
                f"Agent executable '{name}' not found. Set {self.CLI_ENV_VAR} or install it."
            )
        self._resolved_cli = candidate
        return candidate

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def validate(self) -> str:
        """Resolve the executable, raising if it cannot be found."""
        return self._resolve_cli()

    def build_command(self, plan: PromptPlan) -> list[str]:
        """Command line for one prompt; resumptions carry the resume flag."""
        command = [
            self._resolve_cli(),
            *self.agent.base_args,
            self.agent.prompt_flag,
            plan.text,
        ]
        if plan.is_resumption:
            command.append(self.agent.resume_flag)
        return command

    def build_fix_command(self, text: str) -> list[str]:
        """Command line for a standalone, non-resumed prompt."""
        return self.build_command(PromptPlan(index=0, text=text, is_resumption=False))
