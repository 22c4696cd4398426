from stepflow.core.models import ClickConfig, TypeConfig

from .helpers import to_number


class InteractionSteps:
    async def _action_click(self, cfg: ClickConfig, timeout_ms: int) -> None:
        element = await self._locate_element(cfg.selector, timeout_ms)
        button = cfg.button if cfg.button in {"left", "right", "middle"} else "left"
        click_count = int(to_number(cfg.click_count or 1, "click count"))
        await element.click(button=button, click_count=max(1, click_count), timeout=timeout_ms)

    async def _action_type(self, cfg: TypeConfig, timeout_ms: int) -> None:
        element = await self._locate_element(cfg.selector, timeout_ms)
        if cfg.clear:
            await element.fill("", timeout=timeout_ms)
        delay = to_number(cfg.delay if cfg.delay not in (None, "") else 0, "typing delay")
        await element.press_sequentially(cfg.text or "", delay=max(0.0, delay), timeout=timeout_ms)
