import asyncio

from stepflow.core.errors import ValidationError
from stepflow.core.models import NavigateConfig, ScrollConfig, WaitConfig

from .helpers import to_number

_LOAD_STATES = {"load", "domcontentloaded", "networkidle"}


class NavigationSteps:
    async def _action_navigate(self, cfg: NavigateConfig, timeout_ms: int) -> None:
        url = (cfg.url or "").strip()
        wait_until = cfg.wait_until if cfg.wait_until in _LOAD_STATES | {"commit"} else "load"
        await self.page.goto(url, wait_until=wait_until, timeout=timeout_ms)

    async def _action_wait(self, cfg: WaitConfig, timeout_ms: int) -> None:
        kind = str(cfg.kind or "time").lower()
        if kind == "time":
            delay_ms = to_number(cfg.value, "wait value")
            await asyncio.sleep(max(0.0, delay_ms) / 1000)
        elif kind == "selector":
            await self._locate_element(str(cfg.value or ""), timeout_ms)
        elif kind == "navigation":
            state = str(cfg.value or "").strip().lower()
            if state not in _LOAD_STATES:
                state = "load"
            await self.page.wait_for_load_state(state=state, timeout=timeout_ms)
        else:
            raise ValidationError(f"Unknown wait type {cfg.kind!r}")

    async def _action_scroll(self, cfg: ScrollConfig, timeout_ms: int) -> None:
        amount = to_number(cfg.amount if cfg.amount not in (None, "") else 0, "scroll amount")
        delta = -amount if str(cfg.direction).lower() == "up" else amount
        if str(cfg.target).lower() == "element":
            locator = await self._locate_element(cfg.selector, timeout_ms, state="attached")
            await locator.evaluate("(el, dy) => el.scrollBy(0, dy)", delta)
            return
        await self.page.mouse.wheel(0, delta)
