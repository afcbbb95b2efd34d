import logging

from mcphost.tools import ToolProvider, ToolSpec

logger = logging.getLogger(__name__)


class ToolRegistry:
    """Maps tool names to the provider that runs them.

    Built once per session from every connected provider's tool list and
    read-only while the loop runs. Registering a name twice silently
    rebinds it to the later provider; tool names are expected to be unique
    across providers.
    """

    def __init__(self) -> None:
        self._providers: dict[str, ToolProvider] = {}
        self._specs: dict[str, ToolSpec] = {}

    def register(self, provider: ToolProvider, specs: list[ToolSpec]) -> None:
        for spec in specs:
            if spec.name in self._providers:
                logger.debug(
                    f"Tool {spec.name} rebound from "
                    f"{self._providers[spec.name].name} to {provider.name}"
                )
            self._providers[spec.name] = provider
            self._specs[spec.name] = spec

    def resolve(self, name: str) -> ToolProvider | None:
        return self._providers.get(name)

    def all_specs(self) -> list[ToolSpec]:
        return list(self._specs.values())

    def tool_schemas(self) -> list[dict]:
        """All specs in the OpenAI ``tools`` request shape."""
        return [s.to_openai() for s in self._specs.values()]

    def names(self) -> list[str]:
        return list(self._specs)

    def providers(self) -> list[ToolProvider]:
        """Distinct registered providers, in first-registration order."""
        seen: dict[int, ToolProvider] = {}
        for p in self._providers.values():
            seen.setdefault(id(p), p)
        return list(seen.values())

    def __contains__(self, name: str) -> bool:
        return name in self._providers

    def __len__(self) -> int:
        return len(self._specs)
