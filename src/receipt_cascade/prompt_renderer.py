"""Jinja2 rendering of the extraction prompts."""

from pathlib import Path

from jinja2 import Environment, FileSystemLoader, select_autoescape

from receipt_cascade.integrations.base import PromptSpec
from receipt_cascade.models import ProcessingRoute, QualityMetrics

PROMPTS_DIR = Path(__file__).parent / "prompts"

EXPENSE_CATEGORIES = (
    "Office Supplies",
    "Travel & Transportation",
    "Meals & Entertainment",
    "Equipment & Software",
    "Professional Services",
    "Marketing & Advertising",
    "Utilities",
    "Insurance",
    "Other",
)


class PromptRenderer:
    """Renders the system and user prompts for one extraction attempt."""

    def __init__(
        self,
        prompts_dir: str | Path | None = None,
        max_tokens: int = 1000,
        temperature: float = 0.1,
        default_currency: str = "USD",
    ) -> None:
        """
        Initialize the renderer.

        Args:
            prompts_dir: Directory containing the Jinja2 templates
                (default: the templates shipped with the package)
            max_tokens: Response token limit passed to providers
            temperature: Sampling temperature passed to providers
            default_currency: Currency suggested in the JSON skeleton
        """
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.default_currency = default_currency
        self.jinja_env = Environment(
            loader=FileSystemLoader(str(prompts_dir or PROMPTS_DIR)),
            autoescape=select_autoescape(),
            trim_blocks=True,
            lstrip_blocks=True,
        )

    def render(self, metrics: QualityMetrics | None = None) -> tuple[str, str]:
        """
        Render the prompts, adding caution notes for weak images.

        Returns:
            Tuple of (system_prompt, user_prompt)
        """
        system_template = self.jinja_env.get_template("extractor_system.jinja2")
        user_template = self.jinja_env.get_template("extractor_user.jinja2")

        system_prompt = system_template.render()
        user_prompt = user_template.render(
            metrics=metrics,
            categories=EXPENSE_CATEGORIES,
            default_currency=self.default_currency,
        )
        return system_prompt, user_prompt

    def build(
        self,
        route: ProcessingRoute,
        metrics: QualityMetrics | None = None,
        media_type: str = "image/png",
    ) -> PromptSpec:
        system_prompt, user_prompt = self.render(metrics)
        return PromptSpec(
            model=route.model,
            system_prompt=system_prompt,
            user_prompt=user_prompt,
            media_type=media_type,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )
